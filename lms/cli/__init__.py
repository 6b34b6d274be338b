#!/usr/bin/env python3
"""
LMS core maintenance CLI

Usage:
    python -m lms.cli <command> [options]

Commands:
    db          Database operations (init)
    progress    Course progress operations (recalculate, show)
    attempt     Assessment attempt operations (regrade, show)
    config      Configuration (show)

Environment:
    DATABASE_URL              SQLAlchemy async connection string
    LMS_PROGRESS_CALCULATOR   lesson_based|assessment_inclusive|duration_weighted
    LOG_LEVEL                 DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from lms import __version__
from lms.cli.db_commands import DbCommand
from lms.cli.progress_commands import ProgressCommand
from lms.cli.attempt_commands import AttemptCommand
from lms.cli.config_commands import ConfigCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="lms",
        description="LMS progress, grading and enrollment maintenance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s db init
  %(prog)s progress recalculate --course-id 7
  %(prog)s --dry-run progress recalculate --enrollment-id 42
  %(prog)s attempt regrade --id 118
  %(prog)s config show --check
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_subparsers = db_parser.add_subparsers(dest="db_action")

    # db init
    db_subparsers.add_parser("init", help="Create missing tables")

    # Progress commands
    progress_parser = subparsers.add_parser("progress", help="Course progress operations")
    progress_subparsers = progress_parser.add_subparsers(dest="progress_action")

    # progress recalculate
    recalc_parser = progress_subparsers.add_parser("recalculate", help="Recalculate stored course progress")
    recalc_target = recalc_parser.add_mutually_exclusive_group()
    recalc_target.add_argument("--course-id", "-c", type=int, help="Only enrollments of this course")
    recalc_target.add_argument("--enrollment-id", "-e", type=int, help="A single enrollment")
    recalc_parser.add_argument(
        "--include-completed", action="store_true", help="Also recalculate completed enrollments"
    )

    # progress show
    show_parser = progress_subparsers.add_parser("show", help="Show computed progress for an enrollment")
    show_parser.add_argument("--enrollment-id", "-e", type=int, required=True, help="Enrollment ID")

    # Attempt commands
    attempt_parser = subparsers.add_parser("attempt", help="Assessment attempt operations")
    attempt_subparsers = attempt_parser.add_subparsers(dest="attempt_action")

    # attempt regrade
    regrade_parser = attempt_subparsers.add_parser("regrade", help="Re-run automatic grading")
    regrade_parser.add_argument("--id", "-i", type=int, required=True, help="Attempt ID")

    # attempt show
    attempt_show_parser = attempt_subparsers.add_parser("show", help="Show an attempt")
    attempt_show_parser.add_argument("--id", "-i", type=int, required=True, help="Attempt ID")

    # Config commands
    config_parser = subparsers.add_parser("config", help="Configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_action")

    # config show
    config_show_parser = config_subparsers.add_parser("show", help="Show effective settings")
    config_show_parser.add_argument("--check", action="store_true", help="Validate configuration")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    # Setup logging
    setup_logging(parsed.log_level)

    command_map = {
        "db": DbCommand,
        "progress": ProgressCommand,
        "attempt": AttemptCommand,
        "config": ConfigCommand,
    }

    handler = command_map[parsed.command](dry_run=parsed.dry_run)
    return handler.execute(parsed)


if __name__ == "__main__":
    sys.exit(main())
