"""
Command-line interface for the Bitbucket Server to Gitea migration tool.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from . import __version__
from . import config as cfg
from .bitbucket_client import BitbucketServerClient
from .exceptions import ConfigError, MigrationError
from .gitea_client import GiteaClient
from .orchestrator import Migrator
from .utils import Deadline, parse_duration, setup_logging

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .orchestrator import MigrationResult

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


def _add_target_arguments(parser: argparse.ArgumentParser, *, repo_required: bool) -> None:
    _ = parser.add_argument("--project-key", required=True, help="Bitbucket project key")
    _ = parser.add_argument(
        "--repo-slug",
        required=repo_required,
        help="Bitbucket repository slug" + ("" if repo_required else " (default: every repository of the project)"),
    )
    _ = parser.add_argument("--target-owner", help="Gitea organization (default: Bitbucket project name)")
    _ = parser.add_argument("--target-repo", help="Gitea repository name (default: Bitbucket repository name)")
    _ = parser.add_argument("--timeout", help='Overall timeout, e.g. "10m" or "1h30m" (default: config "timeout")')


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="bitbucket-server-to-gitea",
        description="Migrate Bitbucket Server projects, repositories and permissions to Gitea",
    )
    _ = parser.add_argument(
        "--config",
        type=Path,
        help=f"Config file (default: {cfg.DEFAULT_CONFIG_PATH})",
    )
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _ = parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Increase console verbosity (-v for INFO, -vv for DEBUG)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    config_parser = commands.add_parser("config", help="Manage Bitbucket and Gitea server URLs and tokens")
    config_commands = config_parser.add_subparsers(dest="config_command", required=True)
    set_parser = config_commands.add_parser("set", help="Update a config value")
    _ = set_parser.add_argument("key", help=f"One of: {', '.join(cfg.KNOWN_KEYS)}")
    _ = set_parser.add_argument("value", help="New value")

    repo_parser = commands.add_parser("repo", help="Migrate a single repository")
    _add_target_arguments(repo_parser, repo_required=True)

    migrate_parser = commands.add_parser("migrate", help="Migrate a repository or a whole project")
    _add_target_arguments(migrate_parser, repo_required=False)

    return parser.parse_args(argv)


def _print_migration_report(result: MigrationResult) -> None:
    """Print a human readable summary of a migration run."""
    print("=" * 60)
    print(f"Bitbucket project: {result.project_key}")
    print(f"Gitea organization: {result.target_owner}")
    print(f"Status: {'PASSED' if result.success else 'FAILED'}")
    print("-" * 60)

    for outcome in result.repositories:
        status = "OK" if outcome.success else f"FAILED at {outcome.state.value}"
        print(f"  {outcome.slug} -> {outcome.target}: {status}")
        if outcome.error:
            print(f"      {outcome.error}")

    stats = result.stats
    print("-" * 60)
    print(f"Users: created={stats.users_created}, existing={stats.users_existing}")
    print(f"Teams: ensured={stats.teams_ensured}, members added={stats.team_members_added}")
    print(f"Repositories: imported={stats.repositories_migrated}, already present={stats.repositories_reused}")
    print(f"Collaborators added: {stats.collaborators_added}")
    print("=" * 60)


def _run_config_set(args: argparse.Namespace) -> int:
    path = cfg.set_value(args.config, args.key, args.value)
    print(f"You can see the config file: {path}")
    return 0


def _run_migration(args: argparse.Namespace) -> int:
    config = cfg.load_config(args.config)
    if args.timeout:
        config = dataclasses.replace(config, timeout=args.timeout)
    config.validate()

    deadline = Deadline(parse_duration(config.timeout))
    source = BitbucketServerClient.from_settings(config.bitbucket, deadline)
    target = GiteaClient.from_settings(config.gitea, deadline)

    migrator = Migrator(source, target, config)
    result = migrator.migrate(
        args.project_key,
        args.repo_slug,
        target_owner=args.target_owner,
        target_repo=args.target_repo,
    )
    _print_migration_report(result)
    return 0 if result.success else 1


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging(verbosity=args.verbose)

    try:
        if args.command == "config":
            exit_code = _run_config_set(args)
        else:
            exit_code = _run_migration(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")  # noqa: TRY400
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except MigrationError as e:
        logger.exception("Migration failed")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(exit_code)
