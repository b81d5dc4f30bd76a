"""Command line interface for the Backlog markdown migration.

Subcommands:

- ``init``: create a workspace and snapshot a project's content
- ``snapshot --append``: add items created remotely since the last snapshot
- ``apply``: convert items and push the result
- ``rollback``: restore applied items to their first snapshot
- ``list``, ``logs``, ``status``: inspect the workspace
- ``clean``: remove workspace contents except the metadata
"""

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from backlog_migrate import __version__, config
from backlog_migrate.clients.backlog_client import BacklogClient
from backlog_migrate.clients.content_gateway import BacklogContentGateway
from backlog_migrate.clients.exceptions import ClientError
from backlog_migrate.clients.git_client import GitCommandError
from backlog_migrate.display import console, items_table, logs_table, print_diff, status_table
from backlog_migrate.migrations.markdown_migration import MarkdownMigration
from backlog_migrate.migrations.reporting import WorkspaceReport
from backlog_migrate.models.component_results import ComponentResult
from backlog_migrate.models.migration_error import MigrationError
from backlog_migrate.type_definitions import ITEM_TYPES
from backlog_migrate.utils.workspace import Workspace

logger = config.logger

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def split_csv(value: str) -> list[str]:
    """Split a comma separated option value, dropping empty entries."""
    return [part.strip() for part in value.split(",") if part.strip()]


def item_types(value: str) -> list[str]:
    """Argparse type for ``--types``.

    Raises:
        argparse.ArgumentTypeError: If a type is unknown

    """
    types = split_csv(value)
    unknown = [item_type for item_type in types if item_type not in ITEM_TYPES]
    if unknown:
        msg = f"unknown item type(s): {', '.join(unknown)} (choose from {', '.join(ITEM_TYPES)})"
        raise argparse.ArgumentTypeError(msg)
    return types


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="backlog-migrate",
        description="Migrate Backlog wiki notation to GitHub Flavored Markdown",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--dir",
        metavar="PATH",
        help="Workspace directory (default: configured workspace_dir)",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        type=Path,
        help="YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "NOTICE", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    init_parser = subparsers.add_parser("init", help="Create a workspace and snapshot a project")
    init_parser.add_argument("project_key", metavar="PROJECT_KEY", help="Backlog project key")
    init_parser.add_argument(
        "--include-comments",
        action="store_true",
        help="Also snapshot issue comments",
    )
    init_parser.add_argument(
        "--force-convert",
        action="store_true",
        help="Convert documents whose notation cannot be determined",
    )
    init_parser.add_argument("--force-lock", action="store_true", help="Remove an existing workspace lock")

    snapshot_parser = subparsers.add_parser("snapshot", help="Snapshot remote items")
    snapshot_parser.add_argument(
        "--append",
        action="store_true",
        required=True,
        help="Add items created since the last snapshot",
    )
    snapshot_parser.add_argument("--force-lock", action="store_true", help="Remove an existing workspace lock")

    apply_parser = subparsers.add_parser("apply", help="Convert items and push the result")
    apply_parser.add_argument("--auto", action="store_true", help="Approve every change without asking")
    apply_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Convert and commit on a throwaway branch without pushing",
    )
    apply_parser.add_argument(
        "--types",
        type=item_types,
        metavar="TYPES",
        help=f"Comma separated item types ({', '.join(ITEM_TYPES)})",
    )
    apply_parser.add_argument(
        "--no-branch",
        dest="use_branch",
        action="store_false",
        help="Commit directly on the current branch",
    )
    apply_parser.add_argument("--force-lock", action="store_true", help="Remove an existing workspace lock")

    rollback_parser = subparsers.add_parser("rollback", help="Restore applied items to their first snapshot")
    rollback_parser.add_argument("--auto", action="store_true", help="Approve every rollback without asking")
    rollback_parser.add_argument(
        "--targets",
        type=split_csv,
        metavar="KEYS",
        help="Comma separated item keys or ids to roll back",
    )
    rollback_parser.add_argument(
        "--types",
        type=item_types,
        metavar="TYPES",
        help=f"Comma separated item types ({', '.join(ITEM_TYPES)})",
    )
    rollback_parser.add_argument("--force-lock", action="store_true", help="Remove an existing workspace lock")

    list_parser = subparsers.add_parser("list", help="List workspace items")
    list_parser.add_argument("--diff", action="store_true", help="Show the diff of each listed item")
    list_parser.add_argument("--all", dest="show_all", action="store_true", help="List every item")

    logs_parser = subparsers.add_parser("logs", help="Show the audit log")
    logs_parser.add_argument("--limit", type=int, help="Number of newest entries to show")
    logs_parser.add_argument("--all", dest="show_all", action="store_true", help="Show every entry")

    subparsers.add_parser("status", help="Show per type item counts")

    clean_parser = subparsers.add_parser("clean", help="Remove workspace contents except metadata.json")
    clean_parser.add_argument("--force", action="store_true", help="Do not ask for confirmation")

    return parser


def build_migration(workspace: Workspace, project_key: str | None = None) -> MarkdownMigration:
    """Create a migration engine talking to the configured Backlog space."""
    if project_key is None:
        project_key = workspace.load_metadata().project_key
    client = BacklogClient.from_settings()
    gateway = BacklogContentGateway(client, project_key)
    return MarkdownMigration(workspace, gateway=gateway)


def report_result(result: ComponentResult) -> int:
    """Log per item errors and map a result to an exit code."""
    for error in result.errors:
        logger.error(error)
    if result.quit:
        logger.info("Stopped on request, run the command again to continue")
    return EXIT_OK if result.success else EXIT_FAILURE


def show_items(report: WorkspaceReport, show_all: bool, with_diff: bool) -> None:
    items = report.list_items(show_all=show_all)
    console.print(items_table(items, title=f"Items in {report.workspace.root}"))
    if not with_diff:
        return
    for item in items:
        diff = report.item_diff(item)
        if diff:
            print_diff(diff, title=f"{item.item_type} {item.item_key}")


def run_command(args: argparse.Namespace) -> int:
    """Execute a parsed command.

    Returns:
        Process exit code

    """
    workspace = Workspace(config.get_workspace_dir())

    match args.command:
        case "init":
            migration = build_migration(workspace, args.project_key)
            result = migration.init(
                args.project_key,
                include_comments=args.include_comments or config.settings.include_comments,
                force_convert=args.force_convert,
                force_lock=args.force_lock,
            )
        case "snapshot":
            result = build_migration(workspace).snapshot_append(force_lock=args.force_lock)
        case "apply":
            result = build_migration(workspace).apply(
                types=args.types,
                auto=args.auto,
                dry_run=args.dry_run,
                force_lock=args.force_lock,
                use_branch=args.use_branch,
            )
        case "rollback":
            result = build_migration(workspace).rollback(
                types=args.types,
                targets=args.targets,
                auto=args.auto,
                force_lock=args.force_lock,
            )
        case "clean":
            result = MarkdownMigration(workspace).clean(force=args.force)
        case "list":
            report = WorkspaceReport(workspace)
            report.metadata()
            show_items(report, args.show_all, args.diff)
            return EXIT_OK
        case "logs":
            report = WorkspaceReport(workspace)
            report.metadata()
            console.print(logs_table(report.logs(limit=args.limit, show_all=args.show_all)))
            return EXIT_OK
        case "status":
            report = WorkspaceReport(workspace)
            metadata = report.metadata()
            console.print(f"Project [bold]{metadata.project_key}[/] on branch {metadata.base_branch}")
            console.print(status_table(report.status()))
            return EXIT_OK
        case _:
            return EXIT_FAILURE

    return report_result(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and execute the appropriate command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_FAILURE

    try:
        if args.config:
            config.load_config_file(args.config)
        config.update_from_cli_args(args)
        return run_command(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user, state up to the last committed item is kept")
        return EXIT_INTERRUPTED
    except (MigrationError, ClientError, GitCommandError) as e:
        logger.error("%s", e)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
