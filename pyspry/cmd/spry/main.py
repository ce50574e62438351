"""CLI entry point."""

import asyncio
import os
import sys
import click
import logging
from typing import Any, Dict, List, NoReturn, Optional, Tuple
from click import Context

from ... import setup_logging
from ...config import Config, default_config
from ...config.config_parser import parse_config
from ...git import RealGit
from ...github import GitHubClient, build_pygithub, find_github_token
from ...github.retry import RateLimitError, RetryOptions, RetryRunner
from ...pretty import format_validation_error
from ...spr import StackedPR
from ...stack import PRUnit, SelectionError, StackOk, resolve_selection
from ...stack.validation import validate_identifier_format
from ...typing import ConfigurationError, GitHubAuthError, SpryError

# Get module logger
logger = logging.getLogger(__name__)


def check(err: Exception) -> NoReturn:
    """Log an error and exit."""
    logger.error(f"{err}")
    sys.exit(1)


def fail(message: str) -> NoReturn:
    """Print a user-facing error and exit with status 1."""
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        """Initialize with aliases map."""
        super().__init__(name, commands, **attrs)
        self.aliases: Dict[str, str] = {}

    def add_alias(self, alias: str, command: str) -> None:
        """Add an alias for a command."""
        self.aliases[alias] = command

    def get_command(self, ctx: Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, supporting aliases."""
        # Check if cmd_name is a registered alias
        if cmd_name in self.aliases:
            cmd_name = self.aliases[cmd_name]
        return super().get_command(ctx, cmd_name)


@click.group(cls=AliasedGroup)
@click.version_option(package_name="pyspry")
@click.pass_context
def cli(ctx: Context) -> None:
    """spry - Stacked Pull Requests on GitHub."""
    ctx.obj = {}


def common_options(func: Any) -> Any:
    """-C/--directory and -v/--verbose, shared by every command."""
    func = click.option('-v', '--verbose', count=True,
                        help="Increase verbosity (can be used multiple times for more verbosity)")(func)
    func = click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
                        help='Run as if spry was started in DIRECTORY instead of the current working directory')(func)
    return func


def setup_git(directory: Optional[str] = None) -> Tuple[Config, RealGit]:
    """Setup Git command and config."""
    if directory:
        os.chdir(directory)

    # Check git dir
    git_cmd = RealGit(default_config())
    try:
        git_cmd.run_cmd("rev-parse --git-dir")
    except Exception as e:
        check(e)

    try:
        config = Config(parse_config(git_cmd))
    except ConfigurationError as e:
        fail(f"Configuration error:\n{e}")
    return config, RealGit(config)


def setup_github(config: Config) -> Tuple[GitHubClient, RetryRunner]:
    """Create the GitHub client and the retry runner every remote call goes through."""
    from ...github.adapters import PyGithubAdapter

    token = find_github_token(config.repo.github_host)
    if not token:
        raise GitHubAuthError("No GitHub token found. Try one of:\n"
                              "1. Set GITHUB_TOKEN env var\n"
                              "2. Log in with 'gh auth login'")

    runner = RetryRunner(RetryOptions.from_config(config.tool))
    real_github = build_pygithub(token, config.repo.github_host)
    github = GitHubClient(config, runner, PyGithubAdapter(real_github))
    if not config.user.github_username:
        config.user.github_username = github.username()
        logger.debug(f"GitHub user: {config.user.github_username}")
    return github, runner


def setup(directory: Optional[str]) -> Tuple[Config, RealGit, StackedPR]:
    config, git_cmd = setup_git(directory)
    try:
        github, runner = setup_github(config)
    except GitHubAuthError as e:
        fail(f"GitHub authentication error:\n{e}")
    return config, git_cmd, StackedPR(config, github, git_cmd, runner)


def load_units(stackedpr: StackedPR, inject_ids: bool = False) -> Tuple[int, List[PRUnit]]:
    """Parse the local stack, exiting with a report on structural errors."""
    try:
        commits, result = stackedpr.load_stack(inject_ids=inject_ids)
    except SpryError as e:
        fail(str(e))
    except Exception as e:
        check(e)
    if not isinstance(result, StackOk):
        click.echo(format_validation_error(result), err=True)
        sys.exit(1)
    return len(commits), result.units


def run_command(name: str, coro: Any) -> Any:
    """Run a command coroutine on a fresh event loop, mapping errors to exit status 1."""
    try:
        return asyncio.run(coro)
    except RateLimitError as e:
        wait = f" Try again in {e.retry_after_seconds}s." if e.retry_after_seconds else ""
        fail(f"GitHub rate limit exceeded.{wait}")
    except SpryError as e:
        logger.error(f"Error during {name}: {e}")
        fail(str(e))
    except Exception as e:
        logger.error(f"Error during {name}: {e}")
        fail(f"Error: {e}")


@cli.command(name="sync", help="Push stack branches and create or update pull requests")
@common_options
@click.option('--open', 'publish', is_flag=True, help="Open pull requests for units that do not have one yet")
@click.option('--only', type=str, help="Only open a pull request for the unit with this id or commit hash")
@click.option('--up-to', 'up_to', type=str,
              help="Only open pull requests from the bottom of the stack up to this unit")
@click.pass_context
def sync(ctx: Context, directory: Optional[str], verbose: int, publish: bool,
         only: Optional[str], up_to: Optional[str]) -> None:
    """Sync command."""
    setup_logging(verbose)
    if only and up_to:
        fail("--only and --up-to cannot be used together")
    for identifier in (only, up_to):
        if identifier:
            error = validate_identifier_format(identifier)
            if error:
                fail(error)

    config, git_cmd, stackedpr = setup(directory)
    _, units = load_units(stackedpr, inject_ids=True)
    if not units:
        click.echo("✓ No commits in stack")
        return

    selection = resolve_selection(units, only=only, up_to=up_to)
    if isinstance(selection, SelectionError):
        fail(str(selection))

    report = run_command("sync", stackedpr.sync_pull_requests(units, publish=publish, selection=selection))
    if report.failures:
        sys.exit(1)


@cli.command(name="land", help="Land the bottom pull request of the stack by fast-forward")
@common_options
@click.option('--all', 'land_all', is_flag=True, help="Land every consecutive ready pull request from the bottom")
@click.pass_context
def land(ctx: Context, directory: Optional[str], verbose: int, land_all: bool) -> None:
    """Land command."""
    setup_logging(verbose)
    config, git_cmd, stackedpr = setup(directory)
    _, units = load_units(stackedpr)
    report = run_command("land", stackedpr.land_pull_requests(units, land_all=land_all))
    if report.not_ready is not None:
        sys.exit(1)


@cli.command(name="view", help="Show the stack with pull request status")
@common_options
@click.pass_context
def view(ctx: Context, directory: Optional[str], verbose: int) -> None:
    """View command."""
    setup_logging(verbose)
    config, git_cmd, stackedpr = setup(directory)
    commit_count, units = load_units(stackedpr)
    run_command("view", stackedpr.view(units, commit_count))


@cli.command(name="clean", help="Delete stack branches that are already merged into the default branch")
@common_options
@click.option('--dry-run', is_flag=True, help="List orphaned branches without deleting them")
@click.pass_context
def clean(ctx: Context, directory: Optional[str], verbose: int, dry_run: bool) -> None:
    """Clean command."""
    setup_logging(verbose)
    config, git_cmd, stackedpr = setup(directory)
    failed = run_command("clean", stackedpr.clean(dry_run=dry_run))
    if failed:
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    # Add command aliases
    cli.aliases['s'] = 'sync'
    cli.aliases['ls'] = 'view'
    cli(obj={})


if __name__ == "__main__":
    main()
