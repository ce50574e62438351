"""Tests for the land protocol, using the in-memory git and GitHub fakes."""

import asyncio
from typing import List

import pytest

from pyspry.spr.land import Lander, LandReport, NotReady
from pyspry.stack import EnrichedPRUnit, PRUnit, UnitKind
from pyspry.typing import (
    ChecksStatus, LandVerificationError, PRNotFastForwardError, PRNotFoundError, PRNotReadyError, PRState,
    ReviewDecision,
)
from pyspry.tests.fakes import FakeGit, FakeHost, SleepRecorder, make_config


def branch(unit_id: str) -> str:
    return f"spry/alice/{unit_id}"


class LandFixture:
    """A three-PR stack P1 <- P2 <- P3 on top of main, already pushed."""

    def __init__(self) -> None:
        self.config = make_config()
        self.host = FakeHost()
        self.git = FakeGit(self.host)
        self.calls = self.host.calls
        self.git.add_history("base", "h1", "h2", "h3")
        self.git.branches["main"] = "base"
        self.units: List[PRUnit] = []
        base = "main"
        for index, head in enumerate(["h1", "h2", "h3"], start=1):
            unit_id = f"u{index}"
            self.units.append(PRUnit(kind=UnitKind.SINGLE, id=unit_id, title=f"P{index}",
                                     commit_ids=[unit_id], commit_hashes=[head], subjects=[f"P{index}"]))
            self.git.branches[branch(unit_id)] = head
            self.host.add_pr(branch(unit_id), base, f"P{index}")
            base = branch(unit_id)

    def enriched(self) -> List[EnrichedPRUnit]:
        return [EnrichedPRUnit(u, self.host.prs[i].info()) for i, u in enumerate(self.units, start=1)]

    def land(self, land_all: bool = False, sleep: object = None) -> LandReport:
        lander = Lander(self.config, self.host, self.git, sleep=sleep or SleepRecorder())
        return asyncio.run(lander.land(self.enriched(), land_all=land_all))

    def index(self, call: tuple) -> int:
        return self.calls.index(call)


class TestLandAll:
    """Landing every consecutive ready PR."""

    def test_stops_at_first_not_ready(self) -> None:
        """P1 and P2 ready, P3 not: P1 and P2 land, P3 is retargeted and its branch kept."""
        f = LandFixture()
        f.host.prs[3].checks = ChecksStatus.PENDING

        report = f.land(land_all=True)

        assert [pr.number for pr in report.landed] == [1, 2]
        assert report.not_ready is None
        assert report.stopped_at == NotReady(3, ["CI checks are still running"])
        assert f.host.prs[1].state == PRState.MERGED
        assert f.host.prs[2].state == PRState.MERGED
        assert f.host.prs[3].state == PRState.OPEN
        assert f.host.prs[3].base == "main"
        assert f.git.branches["main"] == "h2"
        assert branch("u3") in f.git.branches
        assert report.deleted_branches == [branch("u1"), branch("u2")]

    def test_all_ready_lands_everything(self) -> None:
        f = LandFixture()
        report = f.land(land_all=True)

        assert [pr.number for pr in report.landed] == [1, 2, 3]
        assert report.stopped_at is None
        assert f.git.branches["main"] == "h3"
        assert all(pr.state == PRState.MERGED for pr in f.host.prs.values())

    def test_retarget_happens_before_any_delete(self) -> None:
        f = LandFixture()
        f.land(land_all=True)

        first_delete = min(i for i, c in enumerate(f.calls) if c[0] == "delete_branch")
        assert f.index(("retarget", 2, "main")) < first_delete
        assert f.index(("retarget", 3, "main")) < first_delete
        # Deletion waits until the walk is over
        last_push = max(i for i, c in enumerate(f.calls) if c[0] == "push")
        assert last_push < first_delete

    def test_nothing_above_not_ready_lands(self) -> None:
        f = LandFixture()
        f.host.prs[2].review = ReviewDecision.CHANGES_REQUESTED

        report = f.land(land_all=True)
        assert [pr.number for pr in report.landed] == [1]
        assert f.host.prs[3].state == PRState.OPEN
        assert not any(c[0] == "push" and c[2] == "h3" for c in f.calls)

    def test_snapshot_taken_before_mutation(self) -> None:
        f = LandFixture()
        f.land(land_all=True)

        statuses = [i for i, c in enumerate(f.calls) if c[0] == "merge_status"]
        first_mutation = min(i for i, c in enumerate(f.calls) if c[0] in ("retarget", "push", "delete_branch"))
        assert len(statuses) == 3
        assert max(statuses) < first_mutation

    def test_bottom_not_ready_reports_reasons(self) -> None:
        f = LandFixture()
        f.host.prs[1].checks = ChecksStatus.FAILING
        f.host.prs[1].review = ReviewDecision.REVIEW_REQUIRED

        report = f.land(land_all=True)
        assert report.landed == []
        assert report.not_ready == NotReady(1, ["CI checks are failing", "Review is required"])
        assert not any(c[0] in ("push", "retarget", "delete_branch") for c in f.calls)
        with pytest.raises(PRNotReadyError):
            raise report.not_ready.to_error()


class TestLandSingle:
    """Landing only the bottom PR."""

    def test_lands_bottom_only(self) -> None:
        f = LandFixture()
        report = f.land()

        assert [pr.number for pr in report.landed] == [1]
        assert f.git.branches["main"] == "h1"
        assert f.host.prs[2].base == "main"
        assert f.host.prs[2].state == PRState.OPEN
        assert branch("u1") not in f.git.branches
        assert f.index(("retarget", 2, "main")) < f.index(("delete_branch", branch("u1")))

    def test_skips_non_open_prs(self) -> None:
        f = LandFixture()
        f.host.prs[1].state = PRState.MERGED
        f.host.prs[2].base = "main"
        f.git.branches["main"] = "h1"

        report = f.land()
        assert [pr.number for pr in report.landed] == [2]

    def test_bottom_not_ready_lands_nothing(self) -> None:
        f = LandFixture()
        f.host.prs[1].checks = ChecksStatus.PENDING

        report = f.land()

        assert report.landed == []
        assert report.not_ready == NotReady(1, ["CI checks are still running"])
        assert report.stopped_at is None
        assert not any(c[0] in ("push", "retarget", "delete_branch") for c in f.calls)
        assert f.host.prs[2].base == branch("u1")
        assert f.git.branches["main"] == "base"

    def test_vanished_pr_aborts_before_push(self) -> None:
        f = LandFixture()

        async def get_base_branch(pr_number: int) -> None:
            return None

        f.host.get_base_branch = get_base_branch  # type: ignore[assignment]
        with pytest.raises(PRNotFoundError) as exc_info:
            f.land()
        assert exc_info.value.pr_number == 2
        assert not any(c[0] == "push" for c in f.calls)
        assert f.git.branches["main"] == "base"
        assert branch("u1") in f.git.branches

    def test_no_open_prs(self) -> None:
        f = LandFixture()
        for pr in f.host.prs.values():
            pr.state = PRState.CLOSED
        report = f.land()
        assert report.landed == [] and report.not_ready is None


class TestFastForward:
    """Fast-forward preconditions and merge verification."""

    def test_diverged_default_branch_raises(self) -> None:
        f = LandFixture()
        f.git.add_history("elsewhere")
        f.git.branches["main"] = "elsewhere"

        with pytest.raises(PRNotFastForwardError) as exc_info:
            f.land(land_all=True)
        assert exc_info.value.pr_number == 1
        assert not any(c[0] == "push" for c in f.calls)

    def test_cleanup_runs_after_failure(self) -> None:
        """A failure mid-walk keeps completed landings and still deletes their branches."""
        f = LandFixture()
        original_push = f.git.push

        async def push(commit: str, branch_ref: str, force: bool = False) -> None:
            if commit == "h2":
                raise RuntimeError("remote rejected")
            await original_push(commit, branch_ref, force)

        f.git.push = push  # type: ignore[assignment]
        with pytest.raises(RuntimeError):
            f.land(land_all=True)
        assert f.host.prs[1].state == PRState.MERGED
        assert ("delete_branch", branch("u1")) in f.calls
        assert f.host.prs[2].base == "main"

    def test_merge_never_observed(self) -> None:
        f = LandFixture()
        f.host.merge_on_push = False
        f.config.tool.land_poll_interval = 1.0
        f.config.tool.land_timeout = 3.0
        sleep = SleepRecorder()

        with pytest.raises(LandVerificationError):
            f.land(sleep=sleep)
        assert sleep.waits == [1.0, 1.0]
        assert len([c for c in f.calls if c == ("get_state", 1)]) == 3
        # The default branch moved; the branch is not deleted because the land did not complete
        assert f.git.branches["main"] == "h1"
        assert branch("u1") in f.git.branches
