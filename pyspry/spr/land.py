"""Land protocol: fast-forward ready PRs onto the default branch, bottom-up."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config.models import SpryConfig
from ..stack import EnrichedPRUnit
from ..typing import (
    HostProtocol, LandVerificationError, MergeSnapshot, PRInfo, PRNotFastForwardError,
    PRNotFoundError, PRNotReadyError, PRState, VCSProtocol,
)
from ..util import ensure, short

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotReady:
    """A PR the readiness snapshot rejected."""
    pr_number: int
    reasons: List[str]

    def to_error(self) -> PRNotReadyError:
        return PRNotReadyError(self.pr_number, self.reasons)


@dataclass
class LandReport:
    landed: List[PRInfo] = field(default_factory=list)
    deleted_branches: List[str] = field(default_factory=list)
    # Set when the bottom PR itself is not ready; nothing was landed
    not_ready: Optional[NotReady] = None
    # Set when an all-mode walk stopped above at least one landed PR
    stopped_at: Optional[NotReady] = None


class Lander:
    """Runs one land invocation against the host and the remote."""

    def __init__(self, config: SpryConfig, host: HostProtocol, vcs: VCSProtocol,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.config = config
        self.host = host
        self.vcs = vcs
        self._sleep = sleep

    @property
    def default_branch(self) -> str:
        return self.config.repo.github_branch

    async def snapshot(self, candidates: Sequence[EnrichedPRUnit]) -> Dict[int, MergeSnapshot]:
        """Readiness of every candidate, captured before anything is changed."""
        numbers = [ensure(c.pr).number for c in candidates]
        snapshots = await asyncio.gather(*[self.host.get_merge_status(n) for n in numbers])
        return dict(zip(numbers, snapshots))

    async def retarget_to_default(self, pr_number: int) -> None:
        """Point a PR at the default branch unless its live base already is."""
        base = await self.host.get_base_branch(pr_number)
        if base is None:
            raise PRNotFoundError(pr_number)
        if base != self.default_branch:
            logger.info(f"Retargeting PR #{pr_number} from {base} to {self.default_branch}")
            await self.host.retarget_pr(pr_number, self.default_branch)

    async def fast_forward(self, candidate: EnrichedPRUnit) -> None:
        """Move the default branch to the PR's head commit and wait for GitHub to see the merge."""
        pr = ensure(candidate.pr)
        remote = self.config.repo.github_remote
        branch = self.config.branch_name(candidate.unit.id)

        await self.vcs.fetch()
        head = await self.vcs.get_head_commit(f"{remote}/{branch}")
        if head is None:
            raise PRNotFastForwardError(pr.number, f"branch {branch} does not exist on {remote}")
        if not await self.vcs.is_ancestor(f"{remote}/{self.default_branch}", head):
            raise PRNotFastForwardError(
                pr.number, f"{self.default_branch} has moved past the PR base; rebase and sync first")

        logger.info(f"Landing PR #{pr.number} ({short(head)}) onto {self.default_branch}")
        await self.vcs.push(head, f"refs/heads/{self.default_branch}")
        await self.wait_for_merged(pr.number)

    async def wait_for_merged(self, pr_number: int) -> None:
        """Poll the PR state at a fixed interval until GitHub reports it merged."""
        tool = self.config.tool
        polls = max(1, math.ceil(tool.land_timeout / tool.land_poll_interval)) if tool.land_poll_interval > 0 else 1
        for attempt in range(polls):
            state = await self.host.get_state(pr_number)
            if state == PRState.MERGED:
                return
            logger.debug(f"PR #{pr_number} state {state}, poll {attempt + 1}/{polls}")
            if attempt < polls - 1:
                await self._sleep(tool.land_poll_interval)
        raise LandVerificationError(pr_number, tool.land_timeout)

    async def land(self, units: Sequence[EnrichedPRUnit], land_all: bool = False) -> LandReport:
        """Land the bottom open PR, or in all mode every consecutive ready PR.

        Landed branches are deleted at the end, after every retarget, even
        when the walk is aborted by an exception.
        """
        report = LandReport()
        candidates = [u for u in units if u.is_open]
        if not candidates:
            logger.info("No open PRs to land")
            return report

        snapshots = await self.snapshot(candidates)
        to_delete: List[str] = []
        try:
            for index, candidate in enumerate(candidates):
                if report.landed and not land_all:
                    break
                pr = ensure(candidate.pr)
                snapshot = snapshots[pr.number]
                if not snapshot.is_ready:
                    verdict = NotReady(pr.number, snapshot.not_ready_reasons())
                    if report.landed:
                        report.stopped_at = verdict
                    else:
                        report.not_ready = verdict
                    break

                # Its old base is the branch of the PR landed before it
                if report.landed:
                    await self.retarget_to_default(pr.number)
                # The next PR is based on this branch, which is about to go away
                if index + 1 < len(candidates):
                    await self.retarget_to_default(ensure(candidates[index + 1].pr).number)

                await self.fast_forward(candidate)
                report.landed.append(pr)
                to_delete.append(self.config.branch_name(candidate.unit.id))
        finally:
            for branch in to_delete:
                try:
                    await self.vcs.delete_branch(branch)
                    report.deleted_branches.append(branch)
                except Exception as e:
                    logger.error(f"Failed to delete landed branch {branch}: {e}")
        return report
