"""Pydantic models for config types."""

from typing import List, Optional
from pydantic import BaseModel, Field

DEFAULT_TEMP_COMMIT_PREFIXES = ["WIP", "fixup!", "amend!", "squash!"]

class RepoConfig(BaseModel):
    """Repository configuration."""
    github_remote: str = "origin"
    github_branch: str = "main"
    github_host: str = "github.com"
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None
    branch_prefix: str = "spry"
    temp_commit_prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_TEMP_COMMIT_PREFIXES))

    class Config:
        """Pydantic config."""
        extra = "allow"

class UserConfig(BaseModel):
    """User configuration."""
    github_username: Optional[str] = None
    log_git_commands: bool = True

    class Config:
        """Pydantic config."""
        extra = "allow"

class ToolConfig(BaseModel):
    """Tool configuration: retry policy and land polling."""
    concurrency: int = 5
    max_attempts: int = 3
    base_wait: float = 1.0
    max_wait: float = 30.0
    jitter: float = 0.2
    land_poll_interval: float = 1.0
    land_timeout: float = 30.0

    class Config:
        """Pydantic config."""
        extra = "allow"

class SpryConfig(BaseModel):
    """Full pyspry configuration."""
    repo: RepoConfig = Field(default_factory=RepoConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)

    class Config:
        """Pydantic config."""
        extra = "allow"

    def branch_name(self, unit_id: str) -> str:
        """Remote head branch for a PR-unit: <prefix>/<username>/<unit id>."""
        username = self.user.github_username or "me"
        return f"{self.repo.branch_prefix}/{username}/{unit_id}"

    def branch_pattern(self) -> str:
        """Glob matching every stack branch owned by this user."""
        return self.branch_name("*")

    def is_temp_commit(self, title: Optional[str]) -> bool:
        """Check whether a title marks a temporary commit (case-insensitive prefix match)."""
        if not title:
            return False
        lower = title.lower()
        return any(lower.startswith(p.lower()) for p in self.repo.temp_commit_prefixes if p)
