"""``worklog-sync`` command line entry point."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from . import __version__
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import build_config, to_sync_config
from .core.client import RemoteError, repo_from_git_remote
from .logger import setup_logging
from .store import JsonlRecordStore
from .sync.engine import WorklogSyncEngine
from .sync.models import SyncProgress
from .sync.reporter import (
    format_import_summary,
    format_push_summary,
    format_snapshot_report,
    report_to_json,
)
from .sync.snapshot import SnapshotError

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 1
EXIT_SYNC_ERROR = 2


def _parse_since(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid timestamp '{value}': use ISO-8601, e.g. 2024-05-01T00:00:00Z"
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="worklog-sync",
        description="Sync local work items with a shared git-ref snapshot "
        "and GitHub issues",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Merge the shared snapshot and publish the result
  worklog-sync sync

  # Preview a snapshot sync
  worklog-sync sync --dry-run

  # Push items to GitHub issues, then pull remote changes back
  worklog-sync --repo acme/app github push
  worklog-sync --repo acme/app github import --since 2024-05-01T00:00:00Z
        """,
    )
    parser.add_argument(
        "--repo",
        help="GitHub repository owner/name (overrides WORKLOG_GITHUB_REPO)",
    )
    parser.add_argument(
        "--label-prefix", help="Label namespace prefix (default: wl:)"
    )
    parser.add_argument("--file", help="Local snapshot file")
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file", help="Also write logs to this file (rotated)"
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"worklog-sync version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Sync with the git-ref snapshot")
    sync.add_argument(
        "--dry-run", action="store_true", help="Merge but do not write"
    )
    sync.add_argument("--git-remote", help="Remote holding the snapshot")
    sync.add_argument("--git-branch", help="Branch or ref of the snapshot")

    github = commands.add_parser("github", help="Sync with GitHub issues")
    github_commands = github.add_subparsers(dest="github_command", required=True)
    github_commands.add_parser("push", help="Push items to GitHub issues")
    gh_import = github_commands.add_parser(
        "import", help="Import GitHub issues into items"
    )
    gh_import.add_argument(
        "--since",
        type=_parse_since,
        help="Only issues updated at or after this ISO-8601 timestamp",
    )
    gh_import.add_argument(
        "--create-new",
        action="store_true",
        help="Create items for issues without a worklog marker",
    )
    return parser


def _log_progress(progress: SyncProgress) -> None:
    logger.debug(
        "%s %d/%d", progress.phase.value, progress.current, progress.total
    )


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run one command and exit with its status."""
    args = build_parser().parse_args(argv)
    load_dotenv()
    setup_logging(debug=args.debug, log_file=args.log_file)

    overrides = {
        "repo": args.repo,
        "label_prefix": args.label_prefix,
        "data_file": args.file,
        "git_remote": getattr(args, "git_remote", None),
        "git_branch": getattr(args, "git_branch", None),
        "debug": args.debug,
    }
    try:
        config_files = discover_config_files()
        if config_files:
            logger.info("Configuration file: %s", config_files[0])
        config = to_sync_config(
            build_config(load_hierarchical_config()), overrides
        )
        if args.command == "github" and not config.repo:
            config.repo = repo_from_git_remote(remote=config.git_remote) or ""
    except (ValueError, FileNotFoundError) as exc:
        logger.error("Configuration error: %s", exc)
        print(f"ERROR: Configuration error: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        store = JsonlRecordStore(config.data_file, id_prefix=config.id_prefix)
        engine = WorklogSyncEngine(store, config)
        if args.command == "sync":
            outcome = engine.sync_snapshot(dry_run=args.dry_run)
            text = format_snapshot_report(outcome)
            failed = False
        elif args.github_command == "push":
            outcome = engine.push_github(on_progress=_log_progress)
            text = format_push_summary(outcome)
            failed = bool(outcome.result.errors)
        else:
            outcome = engine.import_github(
                since=args.since,
                create_new=args.create_new,
                on_progress=_log_progress,
            )
            text = format_import_summary(outcome)
            failed = bool(outcome.errors)
    except ValueError as exc:
        logger.error("%s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)
    except (SnapshotError, RemoteError) as exc:
        logger.error("Sync failed: %s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(EXIT_SYNC_ERROR)

    if args.json:
        print(json.dumps(report_to_json(outcome), indent=2))
    else:
        print(text)
    if failed:
        sys.exit(EXIT_SYNC_ERROR)


if __name__ == "__main__":
    main()
