"""Tests for stack rendering."""

from pyspry.pretty import format_stack_view, format_validation_error, status_icon
from pyspry.stack import EnrichedPRUnit, InconsistentGroupTitle, PRUnit, SplitGroup, UnitKind
from pyspry.typing import ChecksStatus, MergeSnapshot, PRInfo, PRState, ReviewDecision


def pr(number: int, state: PRState = PRState.OPEN) -> PRInfo:
    return PRInfo(number=number, url=f"https://github.com/acme/widgets/pull/{number}", state=state)


class TestStackView:
    def test_empty(self) -> None:
        assert format_stack_view([], "feature", 0, "origin/main") == "No commits ahead of origin/main"

    def test_single_and_group(self) -> None:
        single = PRUnit(kind=UnitKind.SINGLE, id="a1b2c3d4", title="Fix typo", commit_ids=["a1b2c3d4"],
                        commit_hashes=["a" * 40], subjects=["Fix typo"])
        group = PRUnit(kind=UnitKind.GROUP, id="cache-0f3e", title="Add cache",
                       commit_ids=["11111111", "22222222"], commit_hashes=["b" * 40, "c" * 40],
                       subjects=["Add store", "Wire store"])
        units = [
            EnrichedPRUnit(single, pr(1),
                           MergeSnapshot(1, ChecksStatus.PENDING, ReviewDecision.REVIEW_REQUIRED)),
            EnrichedPRUnit(group),
        ]
        view = format_stack_view(units, "feature", 3, "origin/main")

        assert "Stack: feature (3 commits, PRs: 1/2 opened)" in view
        assert "◐ #1 Fix typo" in view
        assert "⏳ checks  👀 review" in view
        assert "○ Add cache" in view
        assert "├─ Add store" in view and "└─ Wire store" in view
        assert "(22222222)" in view

    def test_status_icons(self) -> None:
        assert status_icon(None) == "○"
        assert status_icon(pr(1, PRState.MERGED)) == "✓"
        assert status_icon(pr(1, PRState.CLOSED)) == "✗"


class TestValidationError:
    def test_split_group(self) -> None:
        text = format_validation_error(SplitGroup("g1", ["b" * 40, "c" * 40], ["x" * 40]))
        assert "Split group detected" in text
        assert "[bbbbbbbb, cccccccc]" in text
        assert "- xxxxxxxx" in text

    def test_inconsistent_title(self) -> None:
        text = format_validation_error(InconsistentGroupTitle("g1", {"b" * 40: "One", "c" * 40: "Two"}))
        assert "Inconsistent group title" in text
        assert 'bbbbbbbb: "One"' in text
