"""Git interfaces and implementation."""

import asyncio
import os
import re
import shlex
import logging
from typing import Dict, List, Optional, Sequence
import git
import yaml
from git.exc import GitCommandError, InvalidGitRepositoryError
from ..typing import COMMIT_ID_TRAILER, Commit, CommitHash, ConfigurationError, GitInterface
from ..config.models import SpryConfig

# Get module logger
logger = logging.getLogger(__name__)

# Field and record separators used in the stack log format
FIELD_SEP = "\x00"
RECORD_SEP = "\x01"
STACK_LOG_FORMAT = "%H%x00%s%x00%B%x01"

GROUP_TITLES_REF = "refs/spry/group-titles"

trailer_line_regex = re.compile(r'^([A-Za-z0-9][A-Za-z0-9-]*):\s*(.*)$')


def parse_trailers(message: str) -> Dict[str, str]:
    """Parse trailers from the last paragraph of a commit message.

    The paragraph only counts as a trailer block if every non-empty line is a
    `Key: value` pair. If a key appears more than once the last value wins,
    matching git interpret-trailers.
    """
    paragraphs = [p for p in re.split(r'\n\s*\n', message.strip()) if p.strip()]
    if len(paragraphs) < 2:
        return {}
    trailers: Dict[str, str] = {}
    for line in paragraphs[-1].splitlines():
        line = line.strip()
        if not line:
            continue
        match = trailer_line_regex.match(line)
        if not match:
            return {}
        trailers[match.group(1)] = match.group(2).strip()
    return trailers


def parse_stack_log(log_output: str) -> List[Commit]:
    """Parse `git log --reverse --format=STACK_LOG_FORMAT` output into commits, oldest first."""
    commits: List[Commit] = []
    for record in log_output.split(RECORD_SEP):
        if not record.strip():
            continue
        fields = record.lstrip("\n").split(FIELD_SEP)
        if len(fields) < 3:
            logger.debug(f"Skipping malformed log record: {record!r}")
            continue
        commit_hash, subject, body = fields[0].strip(), fields[1], fields[2]
        commits.append(Commit(CommitHash(commit_hash), subject.strip(), body.strip(), parse_trailers(body)))
    return commits


def parse_group_titles(blob: str) -> Dict[str, str]:
    """Parse the group-title map stored in GROUP_TITLES_REF."""
    data = yaml.safe_load(blob) if blob.strip() else None
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items() if v}


class RealGit:
    """Real Git implementation.

    The synchronous run_cmd/must_git pair drives GitPython; the async methods
    implement the VCS collaborator used by sync and land by running those
    commands in a worker thread.
    """
    def __init__(self, config: SpryConfig):
        """Initialize with config."""
        self.config: SpryConfig = config

    @property
    def remote(self) -> str:
        return self.config.repo.github_remote

    def remote_ref(self, branch: str) -> str:
        """Remote-tracking ref for a branch, e.g. origin/main."""
        return f"{self.remote}/{branch}"

    def run_cmd(self, command: str, output: Optional[str] = None) -> str:
        """Run git command."""
        cmd_str = command.strip()
        if self.config.user.log_git_commands:
            logger.info(f"> git {cmd_str}")
        else:
            logger.debug(f"> git {cmd_str}")
        try:
            repo = git.Repo(os.getcwd(), search_parent_directories=True)
            cmd_parts = shlex.split(cmd_str)
            method = getattr(repo.git, cmd_parts[0].replace('-', '_'))
            result = method(*cmd_parts[1:])
            return result if isinstance(result, str) else str(result)
        except GitCommandError as e:
            raise Exception(f"Git command failed: {str(e)}")
        except InvalidGitRepositoryError:
            raise ConfigurationError("Not in a git repository")

    def must_git(self, command: str, output: Optional[str] = None) -> str:
        """Run git command, failing on error."""
        return self.run_cmd(command, output)

    def probe(self, command: str) -> Optional[str]:
        """Run git command, mapping failure to None."""
        try:
            return self.run_cmd(command)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.debug(f"git probe failed: {e}")
            return None

    def merge_base(self) -> str:
        """Commit where the current branch diverged from the default branch."""
        target = self.remote_ref(self.config.repo.github_branch)
        base = self.probe(f"merge-base HEAD {target}")
        if not base:
            raise ConfigurationError(
                f"No {target} branch found. Ensure remote '{self.remote}' has a "
                f"'{self.config.repo.github_branch}' branch, or set a different default branch with: "
                "git config spry.defaultBranch <branch>")
        return base.strip()

    def get_stack_commits(self) -> List[Commit]:
        """Get local commit stack with trailers. Returns commits ordered with bottom commit first."""
        base = self.merge_base()
        log_output = self.must_git(f"log --reverse --format={STACK_LOG_FORMAT} {base}..HEAD")
        commits = parse_stack_log(log_output)
        logger.info(f"get_stack_commits: parsed {len(commits)} commits")
        for c in commits:
            logger.debug(f"  {c.hash[:8]}: id={c.commit_id} group={c.group_id} subject='{c.subject}'")
        return commits

    def read_group_titles(self) -> Dict[str, str]:
        """Read the group id -> title map from ref storage."""
        blob = self.probe(f"cat-file -p {GROUP_TITLES_REF}")
        return parse_group_titles(blob) if blob else {}

    def has_uncommitted_changes(self) -> bool:
        return bool(self.must_git("status --porcelain --untracked-files=no").strip())

    def current_branch(self) -> str:
        return self.must_git("rev-parse --abbrev-ref HEAD").strip()

    def add_missing_commit_ids(self, commits: Sequence[Commit]) -> int:
        """Give every commit lacking a commit-id trailer one, by rebasing from the first such commit.

        The id is the abbreviated hash of the commit before the amend. Commits
        that already carry an id keep it.
        """
        missing = [c for c in commits if not c.commit_id]
        if not missing:
            return 0
        if self.has_uncommitted_changes():
            raise ConfigurationError("Cannot add commit ids with uncommitted changes; commit or stash them first")
        first = missing[0]
        amend = (f"git -c trailer.ifexists=doNothing commit --amend --no-edit --no-verify "
                 f"--trailer \"{COMMIT_ID_TRAILER}: $(git rev-parse --short=8 HEAD)\"")
        self.must_git(f"rebase --quiet --exec {shlex.quote(amend)} {first.hash}~1")
        logger.info(f"Added {COMMIT_ID_TRAILER} to {len(missing)} commit(s)")
        return len(missing)

    # VCS collaborator

    async def list_branches(self, pattern: str) -> List[str]:
        """Remote branches matching a glob, without the remote prefix."""
        out = await asyncio.to_thread(self.probe, f"branch -r --list {self.remote_ref(pattern)}")
        if not out:
            return []
        prefix = f"{self.remote}/"
        branches: List[str] = []
        for line in out.splitlines():
            name = line.strip()
            if name and "->" not in name:
                branches.append(name[len(prefix):] if name.startswith(prefix) else name)
        return branches

    async def get_head_commit(self, ref: str) -> Optional[str]:
        out = await asyncio.to_thread(self.probe, f"rev-parse --verify --quiet {ref}^{{commit}}")
        return out.strip() if out else None

    async def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        out = await asyncio.to_thread(self.probe, f"merge-base --is-ancestor {ancestor} {descendant}")
        return out is not None

    async def push(self, commit: str, branch_ref: str, force: bool = False) -> None:
        if not branch_ref.startswith("refs/"):
            branch_ref = f"refs/heads/{branch_ref}"
        force_flag = "--force " if force else ""
        await asyncio.to_thread(self.must_git, f"push {force_flag}{self.remote} {commit}:{branch_ref}")

    async def delete_branch(self, branch: str) -> None:
        try:
            await asyncio.to_thread(self.must_git, f"push {self.remote} --delete {branch}")
        except Exception as e:
            if "remote ref does not exist" in str(e):
                logger.debug(f"Branch {branch} already deleted")
                return
            raise

    async def fetch(self) -> None:
        await asyncio.to_thread(self.must_git, f"fetch --prune {self.remote}")


__all__ = [
    "GitInterface", "RealGit", "parse_trailers", "parse_stack_log", "parse_group_titles",
    "GROUP_TITLES_REF",
]
