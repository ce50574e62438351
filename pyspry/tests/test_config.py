"""Tests for config parsing and the config model helpers."""

from pathlib import Path
from typing import Dict, Optional

import pytest

from pyspry.config import Config, default_config
from pyspry.config.config_parser import (
    detect_default_branch, detect_remote, parse_config, parse_remote_url, parse_temp_prefixes,
)
from pyspry.typing import ConfigurationError


class TableGit:
    """GitInterface answering exact commands from a dict; unknown commands fail."""

    def __init__(self, answers: Dict[str, str]):
        self.answers = answers

    def run_cmd(self, command: str, output: Optional[str] = None) -> str:
        if command in self.answers:
            return self.answers[command]
        raise Exception(f"Git command failed: {command}")

    def must_git(self, command: str, output: Optional[str] = None) -> str:
        return self.run_cmd(command, output)


def repo_git(tmp_path: Path, **extra: str) -> TableGit:
    answers = {
        "rev-parse --show-toplevel": str(tmp_path),
        "remote": "origin\n",
        "symbolic-ref refs/remotes/origin/HEAD": "refs/remotes/origin/main",
        "remote get-url origin": "git@github.com:acme/widgets.git",
    }
    answers.update(extra)
    return TableGit(answers)


class TestParseRemoteUrl:
    @pytest.mark.parametrize("url,expected", [
        ("git@github.com:acme/widgets.git", ("github.com", "acme", "widgets")),
        ("https://github.com/acme/widgets", ("github.com", "acme", "widgets")),
        ("https://github.com/acme/widgets.git/", ("github.com", "acme", "widgets")),
        ("ssh://git@ghe.example.com/acme/widgets.git", ("ghe.example.com", "acme", "widgets")),
    ])
    def test_urls(self, url: str, expected: tuple) -> None:
        parsed = parse_remote_url(url)
        assert parsed is not None
        assert (parsed['host'], parsed['owner'], parsed['name']) == expected

    def test_unparseable(self) -> None:
        assert parse_remote_url("widgets") is None


class TestDetection:
    def test_single_remote(self) -> None:
        assert detect_remote(TableGit({"remote": "upstream\n"}), None) == "upstream"

    def test_origin_preferred(self) -> None:
        assert detect_remote(TableGit({"remote": "fork\norigin\n"}), None) == "origin"

    def test_ambiguous_remotes(self) -> None:
        with pytest.raises(ConfigurationError, match="fork, upstream"):
            detect_remote(TableGit({"remote": "fork\nupstream\n"}), None)

    def test_no_remotes(self) -> None:
        with pytest.raises(ConfigurationError):
            detect_remote(TableGit({}), None)

    def test_default_branch_from_ls_remote(self) -> None:
        git_cmd = TableGit({"ls-remote --symref origin HEAD": "ref: refs/heads/trunk\tHEAD\nabc123\tHEAD"})
        assert detect_default_branch(git_cmd, "origin") == "trunk"

    def test_temp_prefixes(self) -> None:
        assert parse_temp_prefixes("WIP, tmp ,") == ["WIP", "tmp"]
        assert parse_temp_prefixes("") == []


class TestParseConfig:
    def test_defaults_from_git(self, tmp_path: Path) -> None:
        config = Config(parse_config(repo_git(tmp_path)))

        assert config.repo.github_remote == "origin"
        assert config.repo.github_branch == "main"
        assert config.repo.github_repo_owner == "acme"
        assert config.repo.github_repo_name == "widgets"
        assert config.repo.github_host == "github.com"
        assert config.repo.branch_prefix == "spry"
        assert config.tool.max_attempts == 3

    def test_yaml_file(self, tmp_path: Path) -> None:
        (tmp_path / ".spry.yaml").write_text(
            "repo:\n  branch_prefix: stack\n"
            "user:\n  github_username: bob\n"
            "tool:\n  pyspry:\n    concurrency: 2\n    land_timeout: 60\n"
        )
        config = Config(parse_config(repo_git(tmp_path)))

        assert config.repo.branch_prefix == "stack"
        assert config.user.github_username == "bob"
        assert config.tool.concurrency == 2
        assert config.tool.land_timeout == 60.0

    def test_git_config_overrides_yaml(self, tmp_path: Path) -> None:
        (tmp_path / ".spry.yaml").write_text("repo:\n  github_branch: develop\n  branch_prefix: stack\n")
        git_cmd = repo_git(tmp_path, **{
            "config --get spry.defaultBranch": "trunk\n",
            "config --get spry.tempCommitPrefixes": "",
        })
        config = Config(parse_config(git_cmd))

        assert config.repo.github_branch == "trunk"
        assert config.repo.branch_prefix == "stack"
        assert config.repo.temp_commit_prefixes == []
        assert not config.is_temp_commit("WIP: anything")

    def test_enterprise_host_from_remote(self, tmp_path: Path) -> None:
        git_cmd = repo_git(tmp_path, **{"remote get-url origin": "https://ghe.example.com/acme/widgets.git"})
        config = Config(parse_config(git_cmd))
        assert config.repo.github_host == "ghe.example.com"

    def test_undetectable_default_branch(self, tmp_path: Path) -> None:
        git_cmd = repo_git(tmp_path)
        del git_cmd.answers["symbolic-ref refs/remotes/origin/HEAD"]
        with pytest.raises(ConfigurationError, match="spry.defaultBranch"):
            parse_config(git_cmd)


class TestSpryConfig:
    def test_branch_name(self) -> None:
        config = Config({'repo': {'branch_prefix': 'stack'}, 'user': {'github_username': 'carol'}})
        assert config.branch_name("a1b2c3d4") == "stack/carol/a1b2c3d4"
        assert config.branch_pattern() == "stack/carol/*"

    @pytest.mark.parametrize("title,expected", [
        ("WIP: try things", True),
        ("wip lowercase", True),
        ("fixup! Add cache", True),
        ("Add cache", False),
        ("", False),
        (None, False),
    ])
    def test_is_temp_commit(self, title: Optional[str], expected: bool) -> None:
        assert default_config().is_temp_commit(title) is expected
