"""Config parser logic."""

import os
import re
from typing import Dict, List, Optional, Union, Any
import logging
import yaml

from ...typing import ConfigurationError, GitInterface
from ..models import DEFAULT_TEMP_COMMIT_PREFIXES

# Get module logger
logger = logging.getLogger(__name__)

ConfigValue = Union[str, bool]
RepoConfig = Dict[str, Any]  # Use Any since yaml can return various types
Config = Dict[str, RepoConfig]

CONFIG_FILE_NAME = ".spry.yaml"

# git config keys that override the yaml file
GIT_CONFIG_KEYS = {
    "spry.remote": "github_remote",
    "spry.defaultBranch": "github_branch",
    "spry.branchPrefix": "branch_prefix",
    "spry.tempCommitPrefixes": "temp_commit_prefixes",
}

REMOTE_URL_REGEX = re.compile(r'(?:[:/])([^/:]+)/([^/]+?)(?:\.git)?/?$')


def _git_probe(git_cmd: GitInterface, command: str) -> Optional[str]:
    """Run a git command whose failure just means 'not set'."""
    try:
        value = git_cmd.run_cmd(command).strip()
    except Exception:
        return None
    return value or None


def parse_temp_prefixes(value: str) -> List[str]:
    """Parse a comma-separated prefix list. An empty string disables temp detection."""
    return [p.strip() for p in value.split(",") if p.strip()]


def parse_remote_url(url: str) -> Optional[Dict[str, str]]:
    """Split an ssh or https GitHub remote URL into host, owner and name."""
    url = url.strip()
    match = REMOTE_URL_REGEX.search(url)
    if not match:
        return None
    host_match = re.match(r'^(?:[a-z+]+://)?(?:[^@/]+@)?([^:/]+)', url)
    return {
        'host': host_match.group(1) if host_match else "github.com",
        'owner': match.group(1),
        'name': match.group(2),
    }


def detect_remote(git_cmd: GitInterface, configured: Optional[str]) -> str:
    """Pick the remote: configured one, the only one, or origin."""
    if configured:
        return configured
    remotes_out = _git_probe(git_cmd, "remote")
    remotes = remotes_out.split() if remotes_out else []
    if not remotes:
        raise ConfigurationError("No git remotes found. Add a remote with:\n  git remote add origin <url>")
    if len(remotes) == 1:
        return remotes[0]
    if "origin" in remotes:
        return "origin"
    raise ConfigurationError(
        "Multiple remotes found and no default configured.\n"
        "Set your target remote with:\n"
        "  git config spry.remote <remote-name>\n\n"
        f"Available remotes: {', '.join(remotes)}")


def detect_default_branch(git_cmd: GitInterface, remote: str) -> Optional[str]:
    """Detect the remote's default branch from its HEAD symbolic ref."""
    ref = _git_probe(git_cmd, f"symbolic-ref refs/remotes/{remote}/HEAD")
    if ref:
        return ref.replace(f"refs/remotes/{remote}/", "")
    output = _git_probe(git_cmd, f"ls-remote --symref {remote} HEAD")
    if output:
        match = re.search(r'ref: refs/heads/(\S+)\s+HEAD', output)
        if match:
            return match.group(1)
    return None


def parse_config(git_cmd: GitInterface) -> Config:
    """Parse config from defaults, .spry.yaml, git config and the remote URL.

    Called once at startup; the result is wrapped in a Config and passed
    explicitly to every component.
    """
    config: Config = {
        'repo': {
            'github_host': 'github.com',
            'branch_prefix': 'spry',
            'temp_commit_prefixes': list(DEFAULT_TEMP_COMMIT_PREFIXES),
        },
        'user': {},
        'tool': {
            'pyspry': {}
        }
    }

    # Try to load .spry.yaml from repository root
    toplevel = _git_probe(git_cmd, "rev-parse --show-toplevel") or os.getcwd()
    config_path = os.path.join(toplevel, CONFIG_FILE_NAME)
    try:
        with open(config_path, 'r') as f:
            logger.info(f"Found {CONFIG_FILE_NAME}, loading...")
            file_config = yaml.safe_load(f) or {}
            logger.debug(f"Config from {CONFIG_FILE_NAME}: {file_config}")
            for section in ('repo', 'user'):
                if isinstance(file_config.get(section), dict):
                    config[section].update(file_config[section])
            tool = file_config.get('tool')
            if isinstance(tool, dict):
                config['tool']['pyspry'].update(tool.get('pyspry', tool))
    except FileNotFoundError:
        logger.debug(f"No {CONFIG_FILE_NAME} found, using defaults")

    # git config wins over the yaml file
    git_values: Dict[str, str] = {}
    for key, field_name in GIT_CONFIG_KEYS.items():
        try:
            git_values[field_name] = git_cmd.run_cmd(f"config --get {key}").strip()
        except Exception:
            continue
    if 'temp_commit_prefixes' in git_values:
        config['repo']['temp_commit_prefixes'] = parse_temp_prefixes(git_values.pop('temp_commit_prefixes'))
    config['repo'].update({k: v for k, v in git_values.items() if v})

    remote = detect_remote(git_cmd, config['repo'].get('github_remote'))
    config['repo']['github_remote'] = remote

    if not config['repo'].get('github_branch'):
        branch = detect_default_branch(git_cmd, remote)
        if not branch:
            raise ConfigurationError(
                f"Could not detect default branch for remote '{remote}'.\n"
                "Set it with: git config spry.defaultBranch <branch>")
        config['repo']['github_branch'] = branch

    # Extract repo owner/name from git remote if not in config
    if not config['repo'].get('github_repo_owner') or not config['repo'].get('github_repo_name'):
        remote_url = _git_probe(git_cmd, f"remote get-url {remote}")
        parsed = parse_remote_url(remote_url) if remote_url else None
        if not parsed:
            raise ConfigurationError(
                f"Could not parse owner/name from remote '{remote}' ({remote_url}).\n"
                f"Set repo.github_repo_owner and repo.github_repo_name in {CONFIG_FILE_NAME}")
        if not config['repo'].get('github_repo_owner'):
            config['repo']['github_repo_owner'] = parsed['owner']
        if not config['repo'].get('github_repo_name'):
            config['repo']['github_repo_name'] = parsed['name']
        if parsed['host'] != "github.com":
            config['repo']['github_host'] = parsed['host']

    logger.debug(f"Parsed config: {config}")
    return config
