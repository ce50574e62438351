"""Sync reconciler: keeps the remote PR chain in step with the local stack."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..config.models import SpryConfig
from ..github.retry import RetryRunner
from ..stack import EnrichedPRUnit, PRUnit, Selection
from ..stack.validation import validate_branch_name, validate_pr_title
from ..typing import HostProtocol, PRInfo, PRState, VCSProtocol
from ..util import short

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UP_TO_DATE = "up_to_date"
    SKIP_NO_FLAG = "skip_no_flag"
    SKIP_TEMP = "skip_temp"
    SKIP_NOT_SELECTED = "skip_not_selected"


@dataclass(frozen=True)
class SyncPlanEntry:
    """What sync will do for one unit."""
    unit: PRUnit
    action: SyncAction
    base_branch: str
    head_branch: str
    head_commit: str
    pr: Optional[PRInfo] = None
    push: bool = False


@dataclass
class SyncReport:
    plan: List[SyncPlanEntry] = field(default_factory=list)
    created: List[PRInfo] = field(default_factory=list)
    updated: List[PRInfo] = field(default_factory=list)
    retired: List[EnrichedPRUnit] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


def _unit_action(unit: PRUnit, pr: Optional[PRInfo], remote_tip: Optional[str], publish: bool,
                 config: SpryConfig, selection: Optional[Selection]) -> Tuple[SyncAction, bool]:
    """Action for one unit and whether its branch gets pushed."""
    head = unit.head_commit
    differs = remote_tip != head

    if pr is not None and pr.state == PRState.OPEN:
        return (SyncAction.UPDATE, True) if differs else (SyncAction.UP_TO_DATE, False)

    if remote_tip is None:
        action = SyncAction.CREATE if publish else SyncAction.SKIP_NO_FLAG
    elif differs:
        # A published branch without a PR is kept current so re-running is a no-op
        return SyncAction.UPDATE, True
    else:
        action = SyncAction.CREATE if publish else SyncAction.UP_TO_DATE

    if action == SyncAction.CREATE:
        if config.is_temp_commit(unit.display_title):
            action = SyncAction.SKIP_TEMP
        elif selection is not None and unit.id not in selection.unit_ids:
            action = SyncAction.SKIP_NOT_SELECTED
        return action, differs
    return action, False


def compute_sync_plan(units: Sequence[EnrichedPRUnit], remote_tips: Mapping[str, Optional[str]],
                      config: SpryConfig, publish: bool = False,
                      selection: Optional[Selection] = None) -> List[SyncPlanEntry]:
    """Decide per unit what sync does. Pure.

    remote_tips maps head branch names to the remote branch tip, None or
    missing when the branch does not exist. Bases chain through the units in
    order, starting from the default branch, and skip units whose branch is
    neither on the remote nor pushed in this run.
    """
    plan: List[SyncPlanEntry] = []
    base_branch = config.repo.github_branch
    for enriched in units:
        unit = enriched.unit
        head_branch = config.branch_name(unit.id)
        remote_tip = remote_tips.get(head_branch)
        action, push = _unit_action(unit, enriched.pr, remote_tip, publish, config, selection)
        plan.append(SyncPlanEntry(
            unit=unit,
            action=action,
            base_branch=base_branch,
            head_branch=head_branch,
            head_commit=unit.head_commit,
            pr=enriched.pr,
            push=push,
        ))
        if remote_tip is not None or push:
            base_branch = head_branch
    return plan


async def enrich_units(units: Sequence[PRUnit], host: HostProtocol, config: SpryConfig) -> List[EnrichedPRUnit]:
    """Look up every unit's PR in one concurrent batch."""
    prs = await asyncio.gather(*[host.find_pr_by_branch(config.branch_name(u.id)) for u in units])
    return [EnrichedPRUnit(unit, pr) for unit, pr in zip(units, prs)]


async def fetch_remote_tips(units: Sequence[PRUnit], vcs: VCSProtocol, config: SpryConfig) -> Dict[str, Optional[str]]:
    """Remote tip of every stack branch that exists on the remote."""
    existing = set(await vcs.list_branches(config.branch_pattern()))
    branches = [config.branch_name(u.id) for u in units]
    present = [b for b in branches if b in existing]
    remote = config.repo.github_remote
    tips = await asyncio.gather(*[vcs.get_head_commit(f"{remote}/{b}") for b in present])
    return {branch: tip for branch, tip in zip(present, tips)}


async def retire_merged(units: Sequence[EnrichedPRUnit], host: HostProtocol, vcs: VCSProtocol,
                        config: SpryConfig, failures: Dict[str, str]) -> Tuple[List[EnrichedPRUnit], List[EnrichedPRUnit]]:
    """Split off units whose PR is merged and delete their branches.

    Open PRs based on a merged unit's branch are first retargeted to the
    default branch, since deleting a PR's base branch makes GitHub close it.

    Returns:
        (active units, retired units)
    """
    merged = [u for u in units if u.pr is not None and u.pr.state == PRState.MERGED]
    active = [u for u in units if u not in merged]
    if not merged:
        return active, []

    merged_branches = {config.branch_name(u.unit.id) for u in merged}
    default_branch = config.repo.github_branch
    open_prs = [u.pr for u in active if u.pr is not None and u.pr.state == PRState.OPEN]
    bases = await asyncio.gather(*[host.get_base_branch(pr.number) for pr in open_prs])

    for pr, base in zip(open_prs, bases):
        if base in merged_branches:
            try:
                await host.retarget_pr(pr.number, default_branch)
            except Exception as e:
                # GitHub may already have retargeted or closed it
                logger.debug(f"Retarget of PR #{pr.number} after merge failed: {e}")

    for unit in merged:
        branch = config.branch_name(unit.unit.id)
        logger.info(f"PR #{unit.pr.number} is merged, deleting {branch}")
        try:
            await vcs.delete_branch(branch)
        except Exception as e:
            failures[unit.unit.id] = f"Failed to delete merged branch {branch}: {e}"
    return active, merged


async def _push_entry(entry: SyncPlanEntry, vcs: VCSProtocol, runner: RetryRunner, failures: Dict[str, str]) -> None:
    error = validate_branch_name(entry.head_branch)
    if error:
        failures[entry.unit.id] = error
        return
    try:
        await runner.run(vcs.push, entry.head_commit, entry.head_branch, force=True)
    except Exception as e:
        logger.error(f"Push of {entry.head_branch} failed: {e}")
        failures[entry.unit.id] = f"Push failed: {e}"


async def _create_entry(entry: SyncPlanEntry, host: HostProtocol, report: SyncReport) -> None:
    title = entry.unit.display_title
    error = validate_pr_title(title)
    if error:
        report.failures[entry.unit.id] = error
        return
    pr = await host.create_pr(title.strip(), entry.head_branch, entry.base_branch)
    logger.info(f"Created PR #{pr.number} for {entry.unit.id}")
    report.created.append(pr)


async def _update_entry(entry: SyncPlanEntry, host: HostProtocol, report: SyncReport) -> None:
    pr = entry.pr
    if pr is None or pr.state != PRState.OPEN:
        return
    live_base = await host.get_base_branch(pr.number)
    retargeted = False
    if live_base is not None and live_base != entry.base_branch:
        logger.info(f"PR #{pr.number}: base {live_base} -> {entry.base_branch}")
        await host.retarget_pr(pr.number, entry.base_branch)
        retargeted = True
    if entry.push or retargeted:
        report.updated.append(pr)


async def sync_stack(units: Sequence[PRUnit], host: HostProtocol, vcs: VCSProtocol, runner: RetryRunner,
                     config: SpryConfig, publish: bool = False,
                     selection: Optional[Selection] = None) -> SyncReport:
    """Reconcile remote branches and PRs with the local units (oldest first)."""
    report = SyncReport()
    await vcs.fetch()

    enriched = await enrich_units(units, host, config)
    active, retired = await retire_merged(enriched, host, vcs, config, report.failures)
    report.retired = retired

    tips = await fetch_remote_tips([u.unit for u in active], vcs, config)
    report.plan = compute_sync_plan(active, tips, config, publish, selection)
    for entry in report.plan:
        logger.debug(f"{entry.unit.id} ({short(entry.head_commit)}): {entry.action.value} "
                     f"{entry.head_branch} -> {entry.base_branch} push={entry.push}")

    to_push = [e for e in report.plan if e.push]
    await asyncio.gather(*[_push_entry(e, vcs, runner, report.failures) for e in to_push])

    failed: Set[str] = set(report.failures)
    for entry in report.plan:
        if entry.unit.id in failed:
            logger.warning(f"Skipping PR update for {entry.unit.id}: {report.failures[entry.unit.id]}")
            continue
        try:
            if entry.action == SyncAction.CREATE:
                await _create_entry(entry, host, report)
            else:
                await _update_entry(entry, host, report)
        except Exception as e:
            logger.error(f"Sync of {entry.unit.id} failed: {e}")
            report.failures[entry.unit.id] = str(e)
    return report
