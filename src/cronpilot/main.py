"""
main.py — cronpilot Entry Point

Usage:
    cronpilot serve                          # run the scheduler until Ctrl+C
    cronpilot list                           # show automations
    cronpilot add --name Digest --cron "0 9 * * 1-5" --prompt "..."
    cronpilot run-now <automation-id>        # fire once, wait for the result
    cronpilot delete-run <automation-id> <run-id>
    cronpilot describe "*/15 * * * *"        # human-readable schedule
    cronpilot --log-level DEBUG serve        # verbose logging
    cronpilot --config path/to/config.yaml list
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from dotenv import load_dotenv

from cronpilot import __version__

# Subcommands that never touch settings, storage or the runner.
_PURE_COMMANDS = {"describe", "validate", "presets"}


def _add_automation_fields(parser: argparse.ArgumentParser, *, editing: bool) -> None:
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument("--cron", default=None, help='Cron expression, e.g. "0 9 * * 1-5"')
    parser.add_argument("--prompt", default=None, help="Mission text handed to the agent")
    parser.add_argument("--model", default=None, help="Model name ('' = runner default)")
    parser.add_argument("--orchestrator", default=None, help="Orchestrator name")
    parser.add_argument(
        "--policy",
        choices=["ignore", "run-once", "run-all"],
        default=None,
        help="What to do about fires missed while cronpilot was not running",
    )
    parser.add_argument(
        "--free-agent",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Let the agent act without confirmations",
    )
    if not editing:
        parser.add_argument(
            "--enable",
            action="store_true",
            default=False,
            help="Create the automation enabled (default: disabled)",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cronpilot",
        description="cronpilot — cron-scheduled agent automations",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $CRONPILOT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    sub.add_parser("serve", help="Run the scheduler until interrupted")
    sub.add_parser("list", help="List automations")

    add = sub.add_parser("add", help="Create an automation")
    _add_automation_fields(add, editing=False)

    edit = sub.add_parser("edit", help="Change fields of an automation")
    edit.add_argument("automation_id")
    _add_automation_fields(edit, editing=True)

    for name, text in (
        ("remove", "Delete an automation and its run history"),
        ("enable", "Enable an automation"),
        ("disable", "Disable an automation"),
        ("toggle", "Flip an automation between enabled and disabled"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("automation_id")

    runs = sub.add_parser("runs", help="Show the run history of an automation")
    runs.add_argument("automation_id")
    runs.add_argument("--limit", type=int, default=20, help="Rows to show (default: 20)")

    delete_run = sub.add_parser("delete-run", help="Remove one run from an automation's history")
    delete_run.add_argument("automation_id")
    delete_run.add_argument("agent_id")

    run_now = sub.add_parser("run-now", help="Fire an automation immediately")
    run_now.add_argument("automation_id")
    run_now.add_argument(
        "--no-wait",
        action="store_true",
        default=False,
        help="Return once the run is spawned instead of waiting for it to finish",
    )

    describe = sub.add_parser("describe", help="Describe a cron expression in words")
    describe.add_argument("expression", nargs="+")

    validate = sub.add_parser("validate", help="Check a cron expression")
    validate.add_argument("expression", nargs="+")

    sub.add_parser("presets", help="List the built-in schedule presets")
    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    if hasattr(args, "expression"):
        args.expression = " ".join(args.expression)
    return args


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from cronpilot.config.settings import ConfigError, load_settings
    from cronpilot.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("cronpilot.main")
    return settings, log


def build_store(settings):
    """Key-value store for the configured backend (not yet initialised)."""
    if settings.storage.backend == "memory":
        from cronpilot.storage.memory import InMemoryStore
        return InMemoryStore()
    from cronpilot.storage.sqlite import SqliteStore
    return SqliteStore(settings.storage.sqlite_path)


async def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    from cronpilot.interfaces import cli

    # ── Pure subcommands: no bootstrap needed ─────────────────────────────────
    if args.command in _PURE_COMMANDS:
        return cli.run_pure_command(args)

    settings, log = bootstrap(args)
    log.info("cronpilot.starting", version=__version__, command=args.command)

    store = build_store(settings)
    await store.init()
    try:
        return await cli.run_command(args, settings, store)
    finally:
        await store.close()


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
