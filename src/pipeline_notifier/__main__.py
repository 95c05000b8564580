"""CLI entry point for Pipeline Notifier.

Sends ad-hoc Slack messages, or wraps a command and reports its start,
completion or failure.

Usage:
    python -m pipeline_notifier --message "Nightly build queued"
    python -m pipeline_notifier -- nextflow run main.nf
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import os
import shlex
import sys
import time
import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError

from pipeline_notifier import __version__
from pipeline_notifier.config import Settings, clear_settings_cache, get_settings
from pipeline_notifier.notifier.errors import ConfigurationError
from pipeline_notifier.notifier.models import EventContext, FailureInfo
from pipeline_notifier.notifier.service import NotificationService, build_notification_service

APP_NAME = "Pipeline Notifier"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_COMMAND_NOT_FOUND = 127
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="pipeline-notifier",
        description="Send Slack notifications for pipeline runs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pipeline-notifier --message "Deploy finished"   Send one message
  pipeline-notifier -- nextflow run main.nf        Notify on start/complete/error
  pipeline-notifier --config-check                 Validate config and exit
  pipeline-notifier --dry-run -- make all          Log messages instead of sending
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending them",
    )

    parser.add_argument(
        "--message",
        default=None,
        help="Send a single ad-hoc message and exit",
    )

    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run and report on (prefix with --)",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_config_summary(service: NotificationService, dry_run: bool) -> None:
    """Print a summary of the notification configuration."""
    summary = service.config.redacted_summary()
    mode = service.target.__class__.__name__ if service.target else "disabled"
    print("Configuration:")
    print(f"  Enabled: {summary['enabled']}")
    print(f"  Target: {mode}")
    print(f"  Bot Token: {summary['bot_token']}")
    print(f"  Bot Channel: {summary['bot_destination']}")
    print(f"  Webhook: {summary['webhook_url']}")
    print(
        f"  Events: start={summary['on_start']} complete={summary['on_complete']} "
        f"error={summary['on_error']}"
    )
    print(f"  Dry Run: {dry_run}")
    print()


def validate_config() -> Settings | None:
    """Validate and load application settings.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  {field}: {error['msg']}", file=sys.stderr)
        return None


def build_service(settings: Settings, dry_run: bool) -> NotificationService | None:
    """Resolve credentials and wire the notification service.

    Returns:
        The service, or None if the credentials are malformed.
    """
    try:
        return build_notification_service(settings.slack, dry_run=dry_run)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None


async def send_message(service: NotificationService, text: str) -> int:
    """Send one ad-hoc message and wait for it to be flushed.

    Returns:
        Exit code.
    """
    queued = service.notifier.notify(text)
    await service.shutdown()
    return EXIT_SUCCESS if queued or not service.enabled else EXIT_ERROR


async def run_command(service: NotificationService, command: list[str]) -> int:
    """Run a command, notifying on start, completion and failure.

    Args:
        service: Wired notification service.
        command: Program and arguments.

    Returns:
        The command's exit code.
    """
    logger = logging.getLogger(__name__)
    run_id = uuid.uuid4().hex
    workflow = Path(command[0]).name
    ctx = EventContext(
        run_id=run_id,
        run_name=f"{workflow}-{run_id[:8]}",
        workflow_name=workflow,
        command_line=shlex.join(command),
        work_dir=os.getcwd(),
        start_time=datetime.now(UTC),
    )

    service.observer.on_start(ctx)
    started = time.monotonic()
    error: str | None = None
    try:
        process = await asyncio.create_subprocess_exec(*command)
        exit_code = await process.wait()
        if exit_code != 0:
            error = f"Command exited with status {exit_code}"
    except OSError as e:
        exit_code = EXIT_COMMAND_NOT_FOUND
        error = f"Could not run command: {e}"

    done = replace(ctx, duration=timedelta(seconds=time.monotonic() - started))
    if error is None:
        service.observer.on_complete(done)
    else:
        logger.info("%s", error)
        service.observer.on_error(
            replace(done, error_message=error),
            FailureInfo(process=workflow, exit_status=exit_code),
        )

    await service.shutdown()
    return exit_code


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(args.log_level or settings.log_level)

    dry_run = args.dry_run or settings.dry_run
    service = build_service(settings, dry_run)
    if service is None:
        sys.exit(EXIT_CONFIG_ERROR)

    if args.config_check:
        print(f"{APP_NAME} v{APP_VERSION}: configuration is valid")
        print()
        print_config_summary(service, dry_run)
        sys.exit(EXIT_SUCCESS)

    command = args.command[1:] if args.command[:1] == ["--"] else args.command

    try:
        if args.message is not None:
            exit_code = asyncio.run(send_message(service, args.message))
        elif command:
            exit_code = asyncio.run(run_command(service, command))
        else:
            parser.print_usage(sys.stderr)
            exit_code = EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
