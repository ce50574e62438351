"""Adapter classes to wrap PyGithub objects with our protocol interfaces."""

from typing import Dict, List, Optional, Union
import logging

from github import Github
from github.Repository import Repository
from github.PullRequest import PullRequest as PyGithubPullRequest
from github.NamedUser import NamedUser
from github.AuthenticatedUser import AuthenticatedUser
from github.GithubObject import NotSet

from . import (
    PyGithubProtocol,
    GitHubRepoProtocol,
    GitHubPullRequestProtocol,
    GitHubUserProtocol,
    GitHubRefProtocol,
)
from .types import GitHubRequester, GraphQLResponseType

logger = logging.getLogger(__name__)


class PyGithubUserAdapter(GitHubUserProtocol):
    """Adapter for PyGithub NamedUser or AuthenticatedUser objects."""

    def __init__(self, user: Union[NamedUser, AuthenticatedUser]) -> None:
        self._user = user

    @property
    def login(self) -> str:
        return self._user.login


class PyGithubPullRequestAdapter(GitHubPullRequestProtocol):
    """Adapter for PyGithub PullRequest objects."""

    def __init__(self, pr: PyGithubPullRequest) -> None:
        self._pr = pr

    @property
    def number(self) -> int:
        return self._pr.number

    @property
    def title(self) -> str:
        return self._pr.title

    @property
    def html_url(self) -> str:
        return self._pr.html_url

    @property
    def state(self) -> str:
        return self._pr.state

    @property
    def base(self) -> GitHubRefProtocol:
        return self._pr.base

    @property
    def head(self) -> GitHubRefProtocol:
        return self._pr.head

    @property
    def merged(self) -> bool:
        # merged_at is part of the list payload; .merged would cost a request per PR
        return self._pr.merged_at is not None

    def edit(self, title: Optional[str] = None, body: Optional[str] = None,
             state: Optional[str] = None, base: Optional[str] = None) -> None:
        """Edit the pull request."""
        # Convert None to NotSet for PyGithub
        self._pr.edit(
            title=title if title is not None else NotSet,
            body=body if body is not None else NotSet,
            state=state if state is not None else NotSet,
            base=base if base is not None else NotSet
        )


class PyGithubRepoAdapter(GitHubRepoProtocol):
    """Adapter for PyGithub Repository objects."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        return PyGithubPullRequestAdapter(self._repo.get_pull(number))

    def get_pulls(self, state: str = "open", head: str = "", base: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering."""
        pulls = self._repo.get_pulls(
            state=state,
            head=head if head else NotSet,
            base=base if base else NotSet
        )
        return [PyGithubPullRequestAdapter(pr) for pr in pulls]

    def create_pull(self, title: str, body: str, base: str, head: str) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        pr = self._repo.create_pull(title=title, body=body, base=base, head=head)
        return PyGithubPullRequestAdapter(pr)


class PyGithubRequesterAdapter(GitHubRequester):
    """Adapter for PyGithub's requester to handle GraphQL."""

    def __init__(self, requester: GitHubRequester) -> None:
        self._requester = requester

    def requestJsonAndCheck(
        self, verb: str, url: str, parameters: Optional[Dict[str, object]] = None,
        headers: Optional[Dict[str, str]] = None, input: Optional[Dict[str, object]] = None
    ) -> GraphQLResponseType:
        """Make a request and return (headers, data)."""
        response_headers, data = self._requester.requestJsonAndCheck(
            verb, url, parameters=parameters, headers=headers, input=input
        )
        return (response_headers or {}, data)


class PyGithubAdapter(PyGithubProtocol):
    """Adapter for the main PyGithub object."""

    def __init__(self, github: Github) -> None:
        self._github = github
        self._requester_adapter: Optional[PyGithubRequesterAdapter] = None

    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        return PyGithubRepoAdapter(self._github.get_repo(full_name_or_id))

    def get_user(self, login: Optional[str] = None) -> Optional[GitHubUserProtocol]:
        """Get a user by login or the authenticated user if login is None."""
        user = self._github.get_user() if login is None else self._github.get_user(login)
        return PyGithubUserAdapter(user) if user else None

    @property
    def requester(self) -> GitHubRequester:
        """Requester for GraphQL calls."""
        if self._requester_adapter is None:
            # Use getattr to avoid type checker issues with private attributes
            real_requester = getattr(self._github, '_Github__requester')
            self._requester_adapter = PyGithubRequesterAdapter(real_requester)
        return self._requester_adapter
