"""Stack model: turning local commits into ordered PR-units."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Union

from ..typing import Commit, MergeSnapshot, PRInfo, PRState
from ..util import short

logger = logging.getLogger(__name__)


class UnitKind(str, Enum):
    SINGLE = "single"
    GROUP = "group"


@dataclass(frozen=True)
class PRUnit:
    """One pull request worth of commits, oldest first.

    `commit_ids` skips commits without a commit-id trailer, so a unit whose
    ids are shorter than its hashes still needs trailer injection.
    """
    kind: UnitKind
    id: str
    title: Optional[str]
    commit_ids: List[str] = field(default_factory=list)
    commit_hashes: List[str] = field(default_factory=list)
    subjects: List[str] = field(default_factory=list)

    @property
    def head_commit(self) -> str:
        return self.commit_hashes[-1]

    @property
    def needs_commit_ids(self) -> bool:
        return len(self.commit_ids) < len(self.commit_hashes)

    @property
    def display_title(self) -> str:
        """Title to show or to open a PR with; untitled groups use their first subject."""
        if self.title:
            return self.title
        return self.subjects[0] if self.subjects else self.id


@dataclass(frozen=True)
class StackOk:
    units: List[PRUnit]


@dataclass(frozen=True)
class SplitGroup:
    """A group's commits are not contiguous in the stack."""
    group_id: str
    commit_hashes: List[str]
    interrupting_commits: List[str]


@dataclass(frozen=True)
class InconsistentGroupTitle:
    """Commits of one group carry different titles."""
    group_id: str
    titles: Dict[str, str]


StackParseResult = Union[StackOk, SplitGroup, InconsistentGroupTitle]


def _new_unit(commit: Commit, kind: UnitKind, unit_id: str, title: Optional[str]) -> PRUnit:
    return PRUnit(
        kind=kind,
        id=unit_id,
        title=title,
        commit_ids=[commit.commit_id] if commit.commit_id else [],
        commit_hashes=[commit.hash],
        subjects=[commit.subject],
    )


def _append(unit: PRUnit, commit: Commit) -> PRUnit:
    return PRUnit(
        kind=unit.kind,
        id=unit.id,
        title=unit.title,
        commit_ids=unit.commit_ids + ([commit.commit_id] if commit.commit_id else []),
        commit_hashes=unit.commit_hashes + [commit.hash],
        subjects=unit.subjects + [commit.subject],
    )


def detect_units(commits: Sequence[Commit], group_titles: Optional[Mapping[str, str]] = None) -> List[PRUnit]:
    """Single left-to-right pass grouping commits into units. Does not validate."""
    titles = group_titles or {}
    units: List[PRUnit] = []
    open_group: Optional[PRUnit] = None

    for commit in commits:
        group_id = commit.group_id
        if group_id and open_group is not None and group_id == open_group.id:
            open_group = _append(open_group, commit)
            continue
        if open_group is not None:
            units.append(open_group)
            open_group = None
        if group_id:
            open_group = _new_unit(commit, UnitKind.GROUP, group_id, titles.get(group_id))
        else:
            unit_id = commit.commit_id or short(commit.hash)
            units.append(_new_unit(commit, UnitKind.SINGLE, unit_id, commit.subject))

    if open_group is not None:
        units.append(open_group)
    return units


def find_split_group(commits: Sequence[Commit]) -> Optional[SplitGroup]:
    """First group whose occurrences are not index-contiguous, if any."""
    positions: Dict[str, List[int]] = {}
    for index, commit in enumerate(commits):
        if commit.group_id:
            positions.setdefault(commit.group_id, []).append(index)

    for group_id, indexes in positions.items():
        for current, following in zip(indexes, indexes[1:]):
            if following != current + 1:
                return SplitGroup(
                    group_id=group_id,
                    commit_hashes=[commits[i].hash for i in indexes],
                    interrupting_commits=[c.hash for c in commits[current + 1:following]],
                )
    return None


def find_inconsistent_title(commits: Sequence[Commit]) -> Optional[InconsistentGroupTitle]:
    """First group whose commits record more than one distinct title, if any."""
    titles_by_group: Dict[str, Dict[str, str]] = {}
    for commit in commits:
        if commit.group_id and commit.group_title:
            titles_by_group.setdefault(commit.group_id, {})[commit.hash] = commit.group_title

    for group_id, titles in titles_by_group.items():
        if len(set(titles.values())) > 1:
            return InconsistentGroupTitle(group_id=group_id, titles=titles)
    return None


def parse_stack(commits: Sequence[Commit], group_titles: Optional[Mapping[str, str]] = None) -> StackParseResult:
    """Parse an oldest-first commit list into PR-units and validate group structure.

    Pure: the result depends only on the commits and the title map.
    """
    split = find_split_group(commits)
    if split is not None:
        logger.debug(f"Group {split.group_id} is split by {len(split.interrupting_commits)} commit(s)")
        return split
    inconsistent = find_inconsistent_title(commits)
    if inconsistent is not None:
        logger.debug(f"Group {inconsistent.group_id} has inconsistent titles")
        return inconsistent
    return StackOk(detect_units(commits, group_titles))


@dataclass(frozen=True)
class EnrichedPRUnit:
    """A unit joined with its pull request on the host, if one exists."""
    unit: PRUnit
    pr: Optional[PRInfo] = None
    merge_status: Optional[MergeSnapshot] = None

    @property
    def is_open(self) -> bool:
        return self.pr is not None and self.pr.state == PRState.OPEN


@dataclass(frozen=True)
class Selection:
    """Unit ids chosen by --only / --up-to."""
    unit_ids: FrozenSet[str]


@dataclass(frozen=True)
class SelectionError:
    identifier: str
    reason: str
    matches: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.reason == "ambiguous":
            return (f"'{self.identifier}' matches multiple commits. Please provide more characters "
                    f"to disambiguate.\n  Matches: {', '.join(self.matches)}")
        if self.reason == "conflict":
            return "--only and --up-to cannot be used together"
        return f"No commit or group matching '{self.identifier}' found in stack"


def resolve_identifier(identifier: str, units: Sequence[PRUnit]) -> Union[PRUnit, SelectionError]:
    """Find the unit an identifier names: exact unit id, then a unique prefix of a unit id,
    commit id or commit hash."""
    for unit in units:
        if unit.id == identifier:
            return unit

    prefix_matches = [u for u in units if u.id.startswith(identifier)]
    if len(prefix_matches) == 1:
        return prefix_matches[0]
    if len(prefix_matches) > 1:
        return SelectionError(identifier, "ambiguous", [u.id for u in prefix_matches])

    matches: Dict[str, PRUnit] = {}
    for unit in units:
        for value in list(unit.commit_ids) + list(unit.commit_hashes):
            if value.startswith(identifier):
                matches[short(value)] = unit
    owners = {u.id for u in matches.values()}
    if not matches:
        return SelectionError(identifier, "not-found")
    if len(owners) > 1:
        return SelectionError(identifier, "ambiguous", sorted(matches))
    return next(iter(matches.values()))


def resolve_selection(units: Sequence[PRUnit], only: Optional[str] = None,
                      up_to: Optional[str] = None) -> Union[Selection, SelectionError, None]:
    """Resolve --only or --up-to to a set of unit ids. None means no selection was made."""
    if only and up_to:
        return SelectionError(only, "conflict")
    identifier = only or up_to
    if not identifier:
        return None

    resolved = resolve_identifier(identifier, units)
    if isinstance(resolved, SelectionError):
        return resolved
    if only:
        return Selection(frozenset([resolved.id]))

    chosen: List[str] = []
    for unit in units:
        chosen.append(unit.id)
        if unit.id == resolved.id:
            break
    return Selection(frozenset(chosen))
