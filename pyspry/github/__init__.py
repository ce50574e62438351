"""GitHub interfaces and implementation."""

import os
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

import yaml
from github import Auth, Github
from github.GithubException import GithubException, UnknownObjectException

from ..config.models import SpryConfig
from ..typing import GitHubAuthError, MergeSnapshot, PRInfo, PRNotFoundError, PRState
from .retry import RetryRunner
from .types import (
    MERGE_STATUS_QUERY, GitHubRequester, GraphQLResponseType,
    merge_snapshot_from_node, parse_merge_status_response,
)

# Get module logger
logger = logging.getLogger(__name__)


# Define protocols for GitHub objects
@runtime_checkable
class GitHubUserProtocol(Protocol):
    """Protocol for GitHub user objects (real or fake)."""
    @property
    def login(self) -> str:
        """Get the user's login name."""
        ...

@runtime_checkable
class GitHubRefProtocol(Protocol):
    """Protocol for GitHub ref objects (base/head references)."""
    @property
    def ref(self) -> str:
        """Get the ref name (e.g., 'main', 'feature-branch')."""
        ...

    @property
    def sha(self) -> str:
        """Get the commit SHA."""
        ...

@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """Protocol for GitHub pull request objects (real or fake)."""
    @property
    def number(self) -> int:
        """Get the PR number."""
        ...

    @property
    def title(self) -> str:
        """Get the PR title."""
        ...

    @property
    def html_url(self) -> str:
        """Get the PR web URL."""
        ...

    @property
    def state(self) -> str:
        """Get the PR state (open, closed)."""
        ...

    @property
    def base(self) -> GitHubRefProtocol:
        """Get the base reference."""
        ...

    @property
    def head(self) -> GitHubRefProtocol:
        """Get the head reference."""
        ...

    @property
    def merged(self) -> bool:
        """Get whether the PR is merged."""
        ...

    def edit(self, title: Optional[str] = None, body: Optional[str] = None, state: Optional[str] = None,
             base: Optional[str] = None) -> None:
        """Edit the pull request."""
        ...

@runtime_checkable
class GitHubRepoProtocol(Protocol):
    """Protocol for GitHub repository objects (real or fake)."""
    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        ...

    def get_pulls(self, state: str = "open", head: str = "", base: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering."""
        ...

    def create_pull(self, title: str, body: str, base: str, head: str) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        ...

@runtime_checkable
class PyGithubProtocol(Protocol):
    """Protocol for PyGithub implementations (real or fake)."""
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name or ID."""
        ...

    def get_user(self, login: Optional[str] = None) -> Optional[GitHubUserProtocol]:
        """Get a user by login or the authenticated user if login is None."""
        ...

    @property
    def requester(self) -> GitHubRequester:
        """Requester used for GraphQL calls."""
        ...


def find_github_token(host: str = "github.com") -> Optional[str]:
    """Find GitHub token from env var or gh CLI config."""
    # First try environment variables
    for var in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.environ.get(var)
        if token:
            return token

    # Then try gh CLI config at ~/.config/gh/hosts.yml
    gh_config_path = Path.home() / ".config" / "gh" / "hosts.yml"
    try:
        if gh_config_path.exists():
            with open(gh_config_path, "r") as f:
                gh_config = yaml.safe_load(f)
                if gh_config and host in gh_config:
                    host_config: Dict[str, object] = gh_config[host] or {}
                    token = host_config.get("oauth_token")
                    if isinstance(token, str) and token:
                        return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")
    return None


def api_base_url(host: str) -> str:
    """REST API root for github.com or a GitHub Enterprise host."""
    if host == "github.com":
        return "https://api.github.com"
    return f"https://{host}/api/v3"


def build_pygithub(token: str, host: str) -> Github:
    """PyGithub client for a host, with urllib3 retries off; RetryRunner owns retrying."""
    return Github(auth=Auth.Token(token), base_url=api_base_url(host), retry=None)


def graphql_url(host: str) -> str:
    if host == "github.com":
        return "https://api.github.com/graphql"
    return f"https://{host}/api/graphql"


def pr_info_from(pr: GitHubPullRequestProtocol) -> PRInfo:
    """Convert a host pull request into a PRInfo."""
    if pr.merged:
        state = PRState.MERGED
    elif pr.state == "open":
        state = PRState.OPEN
    else:
        state = PRState.CLOSED
    return PRInfo(number=pr.number, url=pr.html_url, state=state, title=pr.title,
                  base_ref=pr.base.ref, head_ref=pr.head.ref)


class GitHubClient:
    """Host collaborator backed by PyGithub.

    PyGithub is blocking, so every call is handed to the RetryRunner, which
    runs it in a worker thread under the shared concurrency limit.
    """
    def __init__(self, config: SpryConfig, runner: RetryRunner, github_client: PyGithubProtocol):
        self.config = config
        self.runner = runner
        self.client = github_client
        self._repo: Optional[GitHubRepoProtocol] = None

    @property
    def repo(self) -> GitHubRepoProtocol:
        """Get GitHub repository."""
        if self._repo is None:
            owner = self.config.repo.github_repo_owner
            name = self.config.repo.github_repo_name
            self._repo = self.client.get_repo(f"{owner}/{name}")
        return self._repo

    def username(self) -> str:
        """Login of the authenticated user."""
        try:
            user = self.client.get_user()
            login = user.login if user is not None else None
        except GithubException as e:
            raise GitHubAuthError(f"Could not authenticate with GitHub: {e}") from e
        if login is None:
            raise GitHubAuthError("Could not determine the authenticated GitHub user")
        return login

    def _get_pull(self, pr_number: int) -> GitHubPullRequestProtocol:
        return self.repo.get_pull(pr_number)

    async def _fetch_pull(self, pr_number: int) -> GitHubPullRequestProtocol:
        try:
            return await self.runner.run_blocking(self._get_pull, pr_number)
        except UnknownObjectException:
            raise PRNotFoundError(pr_number)

    def _find_pr_by_branch(self, branch: str) -> Optional[PRInfo]:
        owner = self.config.repo.github_repo_owner
        pulls = self.repo.get_pulls(state="all", head=f"{owner}:{branch}")
        matching = [pr for pr in pulls if pr.head.ref == branch]
        logger.debug(f"GitHub returned {len(matching)} PRs for branch {branch}")
        if not matching:
            return None
        # An open PR wins over older closed or merged ones for the same branch
        for pr in matching:
            if pr.state == "open":
                return pr_info_from(pr)
        return pr_info_from(matching[0])

    async def find_pr_by_branch(self, branch: str) -> Optional[PRInfo]:
        logger.info(f"> github find pr : {branch}")
        return await self.runner.run_blocking(self._find_pr_by_branch, branch)

    def _create_pr(self, title: str, head: str, base: str, body: str) -> PRInfo:
        return pr_info_from(self.repo.create_pull(title=title, body=body, base=base, head=head))

    async def create_pr(self, title: str, head: str, base: str, body: Optional[str] = None) -> PRInfo:
        logger.info(f"> github create : {title} ({head} -> {base})")
        return await self.runner.run_blocking(self._create_pr, title, head, base, body or "")

    def _query_merge_status(self, pr_number: int) -> GraphQLResponseType:
        return self.client.requester.requestJsonAndCheck(
            "POST",
            graphql_url(self.config.repo.github_host),
            input={
                "query": MERGE_STATUS_QUERY,
                "variables": {
                    "owner": self.config.repo.github_repo_owner,
                    "name": self.config.repo.github_repo_name,
                    "number": pr_number,
                },
            },
        )

    async def get_merge_status(self, pr_number: int) -> MergeSnapshot:
        logger.info(f"> github merge status #{pr_number}")
        _, data = await self.runner.run_blocking(self._query_merge_status, pr_number)
        response = parse_merge_status_response(data)
        if response.errors:
            messages = "; ".join(e.message for e in response.errors)
            logger.debug(f"GraphQL errors for PR #{pr_number}: {messages}")
        node = None
        if response.data and response.data.repository:
            node = response.data.repository.pullRequest
        if node is None:
            raise PRNotFoundError(pr_number)
        snapshot = merge_snapshot_from_node(node)
        logger.debug(f"PR #{pr_number}: checks={snapshot.checks_status.value} review={snapshot.review_decision.value}")
        return snapshot

    async def get_base_branch(self, pr_number: int) -> Optional[str]:
        try:
            pr = await self._fetch_pull(pr_number)
        except PRNotFoundError:
            return None
        return pr.base.ref

    async def retarget_pr(self, pr_number: int, new_base: str) -> None:
        logger.info(f"> github retarget #{pr_number} -> {new_base}")
        pr = await self._fetch_pull(pr_number)
        await self.runner.run_blocking(pr.edit, base=new_base)

    async def get_state(self, pr_number: int) -> Optional[PRState]:
        try:
            pr = await self._fetch_pull(pr_number)
        except PRNotFoundError:
            return None
        return pr_info_from(pr).state
