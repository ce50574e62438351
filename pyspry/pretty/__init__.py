"""Pretty formatting utilities for CLI output."""

import shutil
import sys
from typing import IO, List, Optional, Sequence, Union

from ..stack import EnrichedPRUnit, InconsistentGroupTitle, SplitGroup, UnitKind
from ..typing import ChecksStatus, MergeSnapshot, PRInfo, PRState, ReviewDecision
from ..util import short

SEPARATOR = "─" * 72
DIM = "\x1b[2m"
BLUE = "\x1b[34m"
RESET = "\x1b[0m"

STATUS_ICONS = {
    PRState.OPEN: "◐",
    PRState.MERGED: "✓",
    PRState.CLOSED: "✗",
}


def get_term_width() -> int:
    """Get terminal width, default to 80 if can't detect."""
    try:
        return shutil.get_terminal_size().columns
    except (OSError, ValueError):
        return 80


def header(text: str, use_emoji: bool = True) -> str:
    """Create a header with optional emoji."""
    width = max(get_term_width(), len(text) + 8)

    h_line = "─" * (width - 2)
    v_line = "│"
    emoji = "🎯 " if use_emoji else ""

    result = [
        f"┌{h_line}┐",
        f"{v_line}{' ' * (width - 2)}{v_line}",
        f"{v_line} {emoji}{text}{' ' * (width - len(text) - len(emoji) - 3)}{v_line}",
        f"{v_line}{' ' * (width - 2)}{v_line}",
        f"└{h_line}┘"
    ]

    return "\n".join(result)


def print_header(text: str, use_emoji: bool = True, file: Optional[IO[str]] = None) -> None:
    """Print a header to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(header(text, use_emoji), file=file)


def status_icon(pr: Optional[PRInfo]) -> str:
    """○ no PR, ◐ open, ✓ merged, ✗ closed."""
    if pr is None:
        return "○"
    return STATUS_ICONS.get(pr.state, "○")


def format_blocking_indicators(status: MergeSnapshot) -> str:
    """What keeps a PR from landing, as a one-line summary."""
    indicators: List[str] = []
    if status.checks_status == ChecksStatus.PENDING:
        indicators.append("⏳ checks")
    elif status.checks_status == ChecksStatus.FAILING:
        indicators.append("❌ checks")
    if status.review_decision == ReviewDecision.REVIEW_REQUIRED:
        indicators.append("👀 review")
    elif status.review_decision == ReviewDecision.CHANGES_REQUESTED:
        indicators.append("❌ review")
    return "  ".join(indicators)


def format_unit(enriched: EnrichedPRUnit) -> str:
    unit = enriched.unit
    lines: List[str] = []
    icon = status_icon(enriched.pr)
    pr_num = f"#{enriched.pr.number} " if enriched.pr else ""

    if unit.kind == UnitKind.SINGLE:
        id_display = f" {DIM}({unit.id}){RESET}" if unit.commit_ids else f" {DIM}(no ID){RESET}"
        lines.append(f"  {icon} {pr_num}{unit.title}{id_display}")
    else:
        title = unit.title or "(unnamed)"
        missing = " (no commit ID yet)" if unit.needs_commit_ids else ""
        lines.append(f"  {icon} {pr_num}{title}{missing}")
        # commit_ids only lines up with the commits once every commit has one
        aligned = not unit.needs_commit_ids
        for index, subject in enumerate(unit.subjects):
            prefix = "└─" if index == len(unit.subjects) - 1 else "├─"
            label = unit.commit_ids[index] if aligned else short(unit.commit_hashes[index])
            lines.append(f"    {prefix} {subject} {DIM}({label}){RESET}")

    if enriched.pr:
        lines.append(f"    {BLUE}{enriched.pr.url}{RESET}")
    indicators = format_blocking_indicators(enriched.merge_status) if enriched.merge_status else ""
    if indicators:
        lines.append(f"    {indicators}")
    return "\n".join(lines)


def format_stack_view(units: Sequence[EnrichedPRUnit], branch_name: str, commit_count: int,
                      default_ref: str) -> str:
    """Render the stack, bottom unit first."""
    if not units:
        return f"No commits ahead of {default_ref}"

    opened = len([u for u in units if u.is_open])
    plural = "" if commit_count == 1 else "s"
    lines = [
        f"Stack: {branch_name} ({commit_count} commit{plural}, PRs: {opened}/{len(units)} opened)",
        f"{DIM}○ no PR  ◐ open  ✓ merged  ✗ closed{RESET}",
        "",
        f"  → {default_ref}",
    ]
    for unit in units:
        lines.append(SEPARATOR)
        lines.append(format_unit(unit))
    lines.append(SEPARATOR)
    return "\n".join(lines)


def format_validation_error(result: Union[SplitGroup, InconsistentGroupTitle]) -> str:
    """Explain a structural stack error and how to repair it."""
    lines: List[str] = []
    if isinstance(result, SplitGroup):
        commit_list = ", ".join(short(h) for h in result.commit_hashes)
        lines.append("✗ Error: Split group detected")
        lines.append("")
        lines.append(f"  Group {result.group_id} has non-contiguous commits.")
        lines.append(f"  Commits: [{commit_list}]")
        lines.append("")
        lines.append(f"  {len(result.interrupting_commits)} commit(s) appear between group members:")
        for commit_hash in result.interrupting_commits:
            lines.append(f"    - {short(commit_hash)}")
        lines.append("")
        lines.append("  Reorder the commits so the group is contiguous, or remove the")
        lines.append("  Spry-Group trailer from the commits that should not belong to it.")
    else:
        lines.append("✗ Error: Inconsistent group title")
        lines.append("")
        lines.append(f"  Group {result.group_id} has different titles across its commits:")
        for commit_hash, title in result.titles.items():
            lines.append(f"    {short(commit_hash)}: \"{title}\"")
        lines.append("")
        lines.append("  Make the Spry-Group-Title trailers agree, or drop them and store")
        lines.append("  the title in refs/spry/group-titles.")
    return "\n".join(lines)
