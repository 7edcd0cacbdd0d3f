"""
flickr-mirror CLI - Entry point

Runs a backup pass against the configured Flickr account, or writes a
default configuration file.
"""

import argparse
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.table import Table

from flickr_mirror.core import (
    Config,
    create_default_config,
    get_config_path,
    get_console,
    load_config,
    log,
    setup_loguru,
)
from flickr_mirror.domain.backup import BackupResult, ConfigurationError, RunContext, run_backup
from flickr_mirror.domain.catalog import AuthenticationError, FlickrClient, FlickrError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_client(config: Config) -> FlickrClient:
    """Create a Flickr client from the [flickr] configuration section."""
    return FlickrClient(
        api_key=config.flickr.api_key,
        api_secret=config.flickr.api_secret,
        auth_token=config.flickr.auth_token,
        timeout=config.flickr.timeout,
    )


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line flags on top of the loaded configuration."""
    if args.force:
        config.backup.force = True

    if args.scrub is not None:
        config.backup.scrub_backups = args.scrub

    if args.modified_since:
        # modified_since cannot be combined with other search keys
        search = {"modified_since": args.modified_since}
        if "per_page" in config.search:
            search["per_page"] = config.search["per_page"]
        config.search = search

    return config


def print_summary(result: BackupResult) -> None:
    """Print a summary table for a finished or cancelled run."""
    table = Table(title="Backup summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")

    table.add_row("Items processed", str(result.items))
    table.add_row("Items changed", str(result.changed_items))
    table.add_row("Items failed", str(result.failed_items))
    table.add_row("Files written", str(result.files_written))
    table.add_row("Files not modified", str(result.files_not_modified))
    table.add_row("Files failed", str(result.files_failed))
    table.add_row("Sidecars written", str(result.sidecars_written))
    table.add_row("Images embedded", str(result.embedded))

    if result.scrub is not None:
        table.add_row("Files scrubbed", str(len(result.scrub.deleted)))
        table.add_row("Directories removed", str(len(result.scrub.removed_dirs)))
        table.add_row("Scrub failures", str(len(result.scrub.failed)))

    table.add_row("Final state", result.state.value)
    get_console().print(table)


def install_interrupt_handler(context: RunContext):
    """Route SIGINT to cooperative cancellation.

    The first interrupt lets the in-flight item finish; a second one aborts
    immediately.

    Returns:
        The previous SIGINT handler
    """

    def handler(signum, frame):
        if context.cancel_requested:
            raise KeyboardInterrupt
        context.cancel()
        log("interrupt received, finishing current item (press Ctrl-C again to abort)", level="warning")

    return signal.signal(signal.SIGINT, handler)


def run_backup_command(args: argparse.Namespace) -> int:
    """Run one backup pass.

    Returns:
        Exit code (0 success, 1 fatal error, 130 interrupted)
    """
    config = load_config(args.config)
    setup_loguru(config.logging)
    config = apply_cli_overrides(config, args)

    context = RunContext()
    previous = install_interrupt_handler(context)

    try:
        result = run_backup(config, build_client(config), context=context)
    except KeyboardInterrupt:
        log("backup aborted", level="error")
        return EXIT_INTERRUPTED
    except ConfigurationError as e:
        log(f"configuration error: {e}", level="error")
        return EXIT_FAILURE
    except AuthenticationError as e:
        log(f"authentication failed: {e}", level="error")
        return EXIT_FAILURE
    except FlickrError as e:
        log(f"backup failed: {e}", level="error")
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous)

    print_summary(result)

    if result.cancelled:
        return EXIT_INTERRUPTED

    logger.info(f"backup complete: {result.items} items, {result.files_written} files written")
    return EXIT_OK


def run_init_config(args: argparse.Namespace) -> int:
    """Write the default configuration file.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    path = Path(args.config) if args.config else get_config_path()

    if path.exists() and not args.overwrite:
        print(f"Configuration already exists at: {path} (use --overwrite to replace)", file=sys.stderr)
        return EXIT_FAILURE

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(create_default_config() + "\n", encoding="utf-8")
    except OSError as e:
        print(f"Error: unable to write {path}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print(f"Wrote default configuration to: {path}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flickr-mirror",
        description="flickr-mirror - incremental Flickr backup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    backup_parser = subparsers.add_parser("backup", help="Back up the Flickr account")
    backup_parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.toml (default: ./config.toml or ~/.config/flickr-mirror)",
    )
    backup_parser.add_argument(
        "--force",
        action="store_true",
        help="Re-fetch every file even when it looks up to date",
    )
    backup_parser.add_argument(
        "--scrub",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Delete local files not accounted for by this run",
    )
    backup_parser.add_argument(
        "--modified-since",
        metavar="SPEC",
        help="Only items modified since <n>h|d|w|M|y ago, or epoch seconds",
    )

    init_parser = subparsers.add_parser("init-config", help="Write a default config.toml")
    init_parser.add_argument("--config", type=Path, help="Where to write the file")
    init_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace an existing configuration file",
    )

    return parser


def main(argv: Optional[list] = None) -> None:
    """Main entry point for the flickr-mirror command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.subcommand == "backup":
        sys.exit(run_backup_command(args))

    elif args.subcommand == "init-config":
        sys.exit(run_init_config(args))

    parser.print_help()
    sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
