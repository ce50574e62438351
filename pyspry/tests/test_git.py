"""Unit tests for git module: trailer parsing, stack log parsing and the VCS wrapper."""

import asyncio
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest

from pyspry.git import RealGit, parse_group_titles, parse_stack_log, parse_trailers
from pyspry.typing import COMMIT_ID_TRAILER, GROUP_TRAILER, ConfigurationError
from pyspry.tests.fakes import make_config


class TestParseTrailers:
    """Tests for trailer extraction from commit messages."""

    def test_trailer_block(self) -> None:
        message = "Add cache\n\nLonger description.\n\nSpry-Commit-Id: a1b2c3d4\nSpry-Group: cache-0f3e\n"
        assert parse_trailers(message) == {COMMIT_ID_TRAILER: "a1b2c3d4", GROUP_TRAILER: "cache-0f3e"}

    def test_subject_only_has_no_trailers(self) -> None:
        assert parse_trailers("Spry-Commit-Id: a1b2c3d4") == {}

    def test_last_paragraph_must_be_all_trailers(self) -> None:
        message = "Subject\n\nSpry-Commit-Id: a1b2c3d4\nnot a trailer line"
        assert parse_trailers(message) == {}

    def test_last_value_wins(self) -> None:
        message = "Subject\n\nSpry-Group: first\nSpry-Group: second"
        assert parse_trailers(message) == {GROUP_TRAILER: "second"}


class TestParseStackLog:
    """Tests for parsing the NUL/SOH separated log format."""

    def test_two_commits(self) -> None:
        log = (
            "aaa111\x00First\x00First\n\nSpry-Commit-Id: 11111111\n\x01\n"
            "bbb222\x00Second\x00Second\n\nbody text\n\x01\n"
        )
        commits = parse_stack_log(log)

        assert [c.hash for c in commits] == ["aaa111", "bbb222"]
        assert [c.subject for c in commits] == ["First", "Second"]
        assert commits[0].commit_id == "11111111"
        assert commits[1].commit_id is None

    def test_empty_output(self) -> None:
        assert parse_stack_log("") == []

    def test_malformed_records_are_skipped(self) -> None:
        assert parse_stack_log("garbage\x01") == []


class TestParseGroupTitles:
    def test_yaml_map(self) -> None:
        assert parse_group_titles("cache-0f3e: Add cache\nempty-1234:\n") == {"cache-0f3e": "Add cache"}

    @pytest.mark.parametrize("blob", ["", "   ", "- a list\n", "just text"])
    def test_not_a_map(self, blob: str) -> None:
        assert parse_group_titles(blob) == {}


class ScriptedGit(RealGit):
    """RealGit with run_cmd answering from a table of command prefixes."""

    def __init__(self, responses: Dict[str, Optional[str]]):
        super().__init__(make_config())
        self.responses = responses
        self.commands: List[str] = []

    def run_cmd(self, command: str, output: Optional[str] = None) -> str:
        self.commands.append(command)
        for prefix, response in self.responses.items():
            if command.startswith(prefix):
                if response is None:
                    raise Exception(f"Git command failed: {command}")
                return response
        return ""


class TestRealGit:
    """Tests for RealGit command construction and output handling."""

    def test_list_branches_strips_remote(self) -> None:
        git_cmd = ScriptedGit({"branch -r": "  origin/spry/alice/a1\n  origin/spry/alice/b2\n  origin/HEAD -> origin/main\n"})
        branches = asyncio.run(git_cmd.list_branches("spry/alice/*"))

        assert branches == ["spry/alice/a1", "spry/alice/b2"]
        assert git_cmd.commands == ["branch -r --list origin/spry/alice/*"]

    def test_list_branches_failure_is_empty(self) -> None:
        git_cmd = ScriptedGit({"branch -r": None})
        assert asyncio.run(git_cmd.list_branches("spry/alice/*")) == []

    def test_get_head_commit(self) -> None:
        git_cmd = ScriptedGit({"rev-parse": "abc123\n"})
        assert asyncio.run(git_cmd.get_head_commit("origin/main")) == "abc123"
        assert git_cmd.commands == ["rev-parse --verify --quiet origin/main^{commit}"]

    def test_get_head_commit_missing(self) -> None:
        git_cmd = ScriptedGit({"rev-parse": None})
        assert asyncio.run(git_cmd.get_head_commit("origin/nope")) is None

    def test_is_ancestor(self) -> None:
        assert asyncio.run(ScriptedGit({}).is_ancestor("origin/main", "abc"))
        assert not asyncio.run(ScriptedGit({"merge-base": None}).is_ancestor("origin/main", "abc"))

    def test_push_builds_refspec(self) -> None:
        git_cmd = ScriptedGit({})
        asyncio.run(git_cmd.push("abc123", "spry/alice/a1", force=True))
        asyncio.run(git_cmd.push("def456", "refs/heads/main"))
        assert git_cmd.commands == [
            "push --force origin abc123:refs/heads/spry/alice/a1",
            "push origin def456:refs/heads/main",
        ]

    def test_delete_already_gone_branch(self) -> None:
        git_cmd = ScriptedGit({})
        with patch.object(ScriptedGit, "run_cmd", side_effect=Exception("error: unable to delete: remote ref does not exist")):
            asyncio.run(git_cmd.delete_branch("spry/alice/a1"))

    def test_delete_other_failure_propagates(self) -> None:
        git_cmd = ScriptedGit({"push": None})
        with pytest.raises(Exception, match="Git command failed"):
            asyncio.run(git_cmd.delete_branch("spry/alice/a1"))

    def test_merge_base_missing_default_branch(self) -> None:
        git_cmd = ScriptedGit({"merge-base": None})
        with pytest.raises(ConfigurationError, match="origin/main"):
            git_cmd.merge_base()

    def test_get_stack_commits(self) -> None:
        git_cmd = ScriptedGit({
            "merge-base": "base000\n",
            "log": "aaa111\x00First\x00First\n\nSpry-Commit-Id: 11111111\n\x01",
        })
        commits = git_cmd.get_stack_commits()

        assert [c.commit_id for c in commits] == ["11111111"]
        assert git_cmd.commands[1].endswith("base000..HEAD")

    def test_read_group_titles(self) -> None:
        git_cmd = ScriptedGit({"cat-file": "cache-0f3e: Add cache\n"})
        assert git_cmd.read_group_titles() == {"cache-0f3e": "Add cache"}
        assert ScriptedGit({"cat-file": None}).read_group_titles() == {}

    def test_add_missing_commit_ids_noop(self) -> None:
        git_cmd = ScriptedGit({})
        commits = parse_stack_log("aaa111\x00First\x00First\n\nSpry-Commit-Id: 11111111\n\x01")
        assert git_cmd.add_missing_commit_ids(commits) == 0
        assert git_cmd.commands == []

    def test_add_missing_commit_ids_rebases_from_first_missing(self) -> None:
        git_cmd = ScriptedGit({"status": ""})
        commits = parse_stack_log(
            "aaa111\x00First\x00First\n\nSpry-Commit-Id: 11111111\n\x01"
            "bbb222\x00Second\x00Second\x01"
        )
        assert git_cmd.add_missing_commit_ids(commits) == 1
        assert git_cmd.commands[-1].startswith("rebase --quiet --exec")
        assert git_cmd.commands[-1].endswith("bbb222~1")

    def test_add_missing_commit_ids_refuses_dirty_tree(self) -> None:
        git_cmd = ScriptedGit({"status": " M file.py"})
        commits = parse_stack_log("bbb222\x00Second\x00Second\x01")
        with pytest.raises(ConfigurationError):
            git_cmd.add_missing_commit_ids(commits)
