"""Common types used across the codebase."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, NewType, Optional, Protocol

# Create NewTypes for commit identifiers
CommitID = NewType('CommitID', str)
CommitHash = NewType('CommitHash', str)

# Trailer keys carried in commit messages
COMMIT_ID_TRAILER = "Spry-Commit-Id"
GROUP_TRAILER = "Spry-Group"
GROUP_TITLE_TRAILER = "Spry-Group-Title"


@dataclass(frozen=True)
class Commit:
    """A local commit with its parsed trailers. Oldest-first order is kept by callers."""
    hash: CommitHash
    subject: str
    body: str = ""
    trailers: Mapping[str, str] = field(default_factory=dict)

    @property
    def commit_id(self) -> Optional[CommitID]:
        value = self.trailers.get(COMMIT_ID_TRAILER)
        return CommitID(value) if value else None

    @property
    def group_id(self) -> Optional[str]:
        return self.trailers.get(GROUP_TRAILER) or None

    @property
    def group_title(self) -> Optional[str]:
        return self.trailers.get(GROUP_TITLE_TRAILER) or None

    @classmethod
    def from_strings(cls, commit_hash: str, subject: str, body: str = "",
                     trailers: Optional[Dict[str, str]] = None) -> 'Commit':
        """Create a Commit from plain strings."""
        return cls(CommitHash(commit_hash), subject, body, dict(trailers or {}))


class PRState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class ChecksStatus(str, Enum):
    PENDING = "pending"
    PASSING = "passing"
    FAILING = "failing"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    REVIEW_REQUIRED = "review_required"
    NONE = "none"


@dataclass
class PRInfo:
    """Pull request as seen on the host."""
    number: int
    url: str
    state: PRState
    title: str = ""
    base_ref: Optional[str] = None
    head_ref: Optional[str] = None


@dataclass(frozen=True)
class MergeSnapshot:
    """Readiness of one PR, captured before the land protocol mutates anything."""
    pr_number: int
    checks_status: ChecksStatus
    review_decision: ReviewDecision

    @property
    def is_ready(self) -> bool:
        return (self.checks_status == ChecksStatus.PASSING and
                self.review_decision in (ReviewDecision.APPROVED, ReviewDecision.NONE))

    def not_ready_reasons(self) -> List[str]:
        """Human readable reasons this PR cannot land."""
        reasons: List[str] = []
        if self.checks_status == ChecksStatus.FAILING:
            reasons.append("CI checks are failing")
        elif self.checks_status == ChecksStatus.PENDING:
            reasons.append("CI checks are still running")
        if self.review_decision == ReviewDecision.CHANGES_REQUESTED:
            reasons.append("Changes have been requested")
        elif self.review_decision == ReviewDecision.REVIEW_REQUIRED:
            reasons.append("Review is required")
        return reasons


class GitInterface(Protocol):
    """Synchronous git command runner."""
    def run_cmd(self, command: str, output: Optional[str] = None) -> str:
        ...

    def must_git(self, command: str, output: Optional[str] = None) -> str:
        ...


class VCSProtocol(Protocol):
    """Remote-branch operations the sync and land code needs from git.

    Probe calls (get_head_commit, is_ancestor, list_branches) report failure
    as None/False/[]; mutating calls raise.
    """
    async def list_branches(self, pattern: str) -> List[str]:
        ...

    async def get_head_commit(self, ref: str) -> Optional[str]:
        ...

    async def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        ...

    async def push(self, commit: str, branch_ref: str, force: bool = False) -> None:
        ...

    async def delete_branch(self, branch: str) -> None:
        ...

    async def fetch(self) -> None:
        ...


class HostProtocol(Protocol):
    """Pull request operations on the code host."""
    async def find_pr_by_branch(self, branch: str) -> Optional[PRInfo]:
        ...

    async def create_pr(self, title: str, head: str, base: str, body: Optional[str] = None) -> PRInfo:
        ...

    async def get_merge_status(self, pr_number: int) -> MergeSnapshot:
        ...

    async def get_base_branch(self, pr_number: int) -> Optional[str]:
        ...

    async def retarget_pr(self, pr_number: int, new_base: str) -> None:
        ...

    async def get_state(self, pr_number: int) -> Optional[PRState]:
        ...


class SpryError(Exception):
    """Base class for errors reported to the user."""


class ConfigurationError(SpryError):
    """Repository or tool configuration is missing or invalid."""


class GitHubAuthError(SpryError):
    """No usable GitHub credentials."""


class PRNotFoundError(SpryError):
    """The host has no record of a PR we expected to exist."""
    def __init__(self, pr_number: int):
        super().__init__(f"PR #{pr_number} not found")
        self.pr_number = pr_number


class PRNotFastForwardError(SpryError):
    """The default branch is not an ancestor of the PR head; a rebase is required."""
    def __init__(self, pr_number: int, reason: str):
        super().__init__(f"PR #{pr_number} cannot be fast-forwarded: {reason}")
        self.pr_number = pr_number
        self.reason = reason


class PRNotReadyError(SpryError):
    """Raised by callers that prefer an exception over the NotReady result."""
    def __init__(self, pr_number: int, reasons: List[str]):
        super().__init__(f"PR #{pr_number} is not ready to land: {', '.join(reasons)}")
        self.pr_number = pr_number
        self.reasons = reasons


class LandVerificationError(SpryError):
    """The default branch was pushed but the host never reported the PR as merged."""
    def __init__(self, pr_number: int, timeout: float):
        super().__init__(f"PR #{pr_number} was not marked as merged by GitHub after {timeout:g}s")
        self.pr_number = pr_number
        self.timeout = timeout
