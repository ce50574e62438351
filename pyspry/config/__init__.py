"""Config module."""

from typing import Dict, Any
from .models import RepoConfig, UserConfig, SpryConfig, ToolConfig

class Config(SpryConfig):
    """Config object holding repository, user and tool config.

    Built once at startup from the parsed config dict and passed explicitly
    to every component.
    """
    def __init__(self, config: Dict[str, Dict[str, Any]]):
        """Initialize with parsed config dict."""
        repo_config = config.get('repo', {})
        user_config = config.get('user', {})
        tool_section = config.get('tool', {})
        tool_config = tool_section.get('pyspry', tool_section)

        super().__init__(
            repo=RepoConfig.model_validate(repo_config),
            user=UserConfig.model_validate(user_config),
            tool=ToolConfig.model_validate(tool_config),
        )

def default_config() -> Config:
    """Get default config without parsing git."""
    return Config({
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
        },
        'user': {},
        'tool': {
            'pyspry': {}
        }
    })
