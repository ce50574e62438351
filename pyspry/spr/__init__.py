"""Stacked PR implementation."""

import asyncio
import sys
import logging
from typing import List, Optional, Sequence, Tuple

from ..config.models import SpryConfig
from ..git import RealGit
from ..github.retry import RetryRunner
from ..pretty import format_stack_view, print_header
from ..stack import EnrichedPRUnit, PRUnit, Selection, StackParseResult, parse_stack
from ..typing import Commit, HostProtocol
from .land import Lander, LandReport, NotReady
from .sync import SyncAction, SyncReport, enrich_units, sync_stack

# Get module logger
logger = logging.getLogger(__name__)

SKIP_DESCRIPTIONS = {
    SyncAction.SKIP_NO_FLAG: "pushed without PR (use --open to create)",
    SyncAction.SKIP_TEMP: "temporary commit, no PR opened",
    SyncAction.SKIP_NOT_SELECTED: "not selected, no PR opened",
}


class StackedPR:
    """Entry point for the stack commands.

    Owns no state beyond its collaborators; every command re-reads the local
    stack and the remote before acting.
    """

    def __init__(self, config: SpryConfig, github: HostProtocol, git_cmd: RealGit,
                 runner: Optional[RetryRunner] = None):
        """Initialize with config, GitHub and git clients."""
        self.config = config
        self.github = github
        self.git_cmd = git_cmd
        self.runner = runner or RetryRunner()
        self.output = sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self.output)

    def load_stack(self, inject_ids: bool = False) -> Tuple[List[Commit], StackParseResult]:
        """Read the local stack and parse it into units.

        With inject_ids, commits lacking a commit id get one first; this
        rewrites history so the commits are read again afterwards.
        """
        commits = self.git_cmd.get_stack_commits()
        if inject_ids and any(c.commit_id is None for c in commits):
            added = self.git_cmd.add_missing_commit_ids(commits)
            self._print(f"✓ Added commit ids to {added} commit(s)")
            commits = self.git_cmd.get_stack_commits()
        titles = self.git_cmd.read_group_titles()
        return commits, parse_stack(commits, titles)

    async def sync_pull_requests(self, units: Sequence[PRUnit], publish: bool = False,
                                 selection: Optional[Selection] = None) -> SyncReport:
        """Push branches and create or update PRs for the stack."""
        report = await sync_stack(units, self.github, self.git_cmd, self.runner, self.config,
                                  publish=publish, selection=selection)
        self.print_sync_report(report)
        return report

    def print_sync_report(self, report: SyncReport) -> None:
        print_header("Sync", use_emoji=True, file=self.output)
        self._print("")
        for unit in report.retired:
            if unit.pr is not None:
                self._print(f"✓ PR #{unit.pr.number} merged, branch removed")
        if report.created:
            self._print(f"✓ Created {len(report.created)} PR(s):")
            for pr in report.created:
                self._print(f"  #{pr.number} {pr.url}")
        if report.updated:
            self._print(f"✓ Updated {len(report.updated)} existing PR(s)")
        for entry in report.plan:
            description = SKIP_DESCRIPTIONS.get(entry.action)
            if description:
                self._print(f"  {entry.unit.display_title}: {description}")
        if report.failures:
            self._print(f"\n✗ {len(report.failures)} unit(s) failed:")
            for unit_id, reason in report.failures.items():
                self._print(f"  {unit_id}: {reason}")
        elif not report.created and not report.updated:
            self._print("✓ Everything up to date")
        self._print("")

    async def land_pull_requests(self, units: Sequence[PRUnit], land_all: bool = False) -> LandReport:
        """Land the bottom PR (or all consecutive ready PRs) by fast-forward."""
        enriched = await enrich_units(units, self.github, self.config)
        lander = Lander(self.config, self.github, self.git_cmd)
        report = await lander.land(enriched, land_all=land_all)
        self.print_land_report(report)
        return report

    def print_land_report(self, report: LandReport) -> None:
        print_header("Landing Pull Requests", use_emoji=True, file=self.output)
        self._print("")
        default_branch = self.config.repo.github_branch
        if not report.landed and report.not_ready is None:
            self._print("No open PRs to land")
        for pr in report.landed:
            self._print(f"✓ Landed PR #{pr.number} onto {default_branch}")
        if report.deleted_branches:
            self._print(f"✓ Deleted {len(report.deleted_branches)} branch(es)")
        if report.not_ready is not None:
            self._print_not_ready(report.not_ready)
        if report.stopped_at is not None:
            self._print(f"Stopped at PR #{report.stopped_at.pr_number}:")
            for reason in report.stopped_at.reasons:
                self._print(f"  - {reason}")
        self._print("")

    def _print_not_ready(self, verdict: NotReady) -> None:
        self._print(f"✗ PR #{verdict.pr_number} is not ready to land:")
        for reason in verdict.reasons:
            self._print(f"  - {reason}")

    async def enrich_with_status(self, units: Sequence[PRUnit]) -> List[EnrichedPRUnit]:
        """Units joined with their PRs, plus merge status for the open ones."""
        enriched = await enrich_units(units, self.github, self.config)
        open_units = [u for u in enriched if u.is_open]
        statuses = await asyncio.gather(*[self.github.get_merge_status(u.pr.number) for u in open_units])
        by_number = {s.pr_number: s for s in statuses}
        return [
            EnrichedPRUnit(u.unit, u.pr, by_number.get(u.pr.number)) if u.is_open else u
            for u in enriched
        ]

    async def view(self, units: Sequence[PRUnit], commit_count: int) -> None:
        """Print the stack with PR state and blocking indicators."""
        enriched = await self.enrich_with_status(units)
        branch = self.git_cmd.current_branch()
        default_ref = self.git_cmd.remote_ref(self.config.repo.github_branch)
        self._print(format_stack_view(enriched, branch, commit_count, default_ref))

    async def find_orphaned_branches(self) -> List[str]:
        """Stack branches whose tip is already contained in the default branch."""
        await self.git_cmd.fetch()
        branches = await self.git_cmd.list_branches(self.config.branch_pattern())
        tips = await asyncio.gather(*[self.git_cmd.get_head_commit(self.git_cmd.remote_ref(b)) for b in branches])
        default_ref = self.git_cmd.remote_ref(self.config.repo.github_branch)
        orphaned: List[str] = []
        for branch, tip in zip(branches, tips):
            if tip and await self.git_cmd.is_ancestor(tip, default_ref):
                orphaned.append(branch)
        return orphaned

    async def clean(self, dry_run: bool = False) -> List[str]:
        """Delete orphaned stack branches. Returns the branches that could not be deleted."""
        self._print("Scanning for orphaned branches...\n")
        orphaned = await self.find_orphaned_branches()
        if not orphaned:
            self._print("✓ No orphaned branches found")
            return []

        default_branch = self.config.repo.github_branch
        if dry_run:
            self._print(f"Found {len(orphaned)} orphaned branch(es):")
            for branch in orphaned:
                self._print(f"  {branch} (merged to {default_branch})")
            self._print("\nRun without --dry-run to delete these branches.")
            return []

        deleted: List[str] = []
        failed: List[str] = []
        for branch in orphaned:
            try:
                await self.runner.run(self.git_cmd.delete_branch, branch)
                deleted.append(branch)
            except Exception as e:
                logger.error(f"Failed to delete {branch}: {e}")
                failed.append(branch)

        if deleted:
            self._print(f"✓ Deleted {len(deleted)} orphaned branch(es):")
            for branch in deleted:
                self._print(f"  {branch}")
        if failed:
            self._print(f"\n⚠ Failed to delete {len(failed)} branch(es):")
            for branch in failed:
                self._print(f"  {branch}")
        return failed
