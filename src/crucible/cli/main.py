"""
crucible command line.

Usage:
    crucible deploy app.py [--stage S] [--quiet] [--force] [--adopt] [--local]
    crucible destroy app.py [--stage S] [--yes]
    crucible read app.py [--stage S]
    crucible state <app> [--stage S]
    crucible providers [--module M ...]
"""

from __future__ import annotations

import argparse
from typing import Sequence

from crucible.config import get_settings
from crucible.core.errors import ExitCode, main_with_error_handling
from crucible.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crucible", description="crucible infrastructure as code")
    parser.add_argument("--log-level", help="Log level (default: CRUCIBLE_LOG_LEVEL)")
    parser.add_argument(
        "--log-format", choices=["console", "json"], default="console", help="Log output format"
    )
    subparsers = parser.add_subparsers(dest="command")

    for command, help_text in (
        ("deploy", "Create or update the resources declared by a script"),
        ("destroy", "Destroy every resource of a stage"),
        ("read", "Evaluate a script against existing state without changing anything"),
    ):
        script_parser = subparsers.add_parser(command, help=help_text)
        script_parser.add_argument("script", help="Path to the application script")
        script_parser.add_argument("--stage", help="Stage name (default: CRUCIBLE_STAGE or $USER)")
        script_parser.add_argument("--quiet", action="store_true", help="Suppress lifecycle logs")
        if command == "destroy":
            script_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
        else:
            script_parser.add_argument("--force", action="store_true", help="Force updates")
            script_parser.add_argument("--adopt", action="store_true", help="Adopt existing resources")
            script_parser.add_argument(
                "--local", "--dev", dest="local", action="store_true", help="Simulate locally"
            )
            script_parser.add_argument("--watch", action="store_true", help="Watch for changes")

    state_parser = subparsers.add_parser("state", help="Show the persisted state of a stage")
    state_parser.add_argument("app", help="Application name")
    state_parser.add_argument("--stage", help="Stage name (default: CRUCIBLE_STAGE or $USER)")

    providers_parser = subparsers.add_parser("providers", help="List registered resource kinds")
    providers_parser.add_argument(
        "--module", action="append", default=[], help="Provider module to import (repeatable)"
    )

    return parser


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or get_settings().log_level, fmt=args.log_format)

    if args.command in ("deploy", "destroy", "read"):
        from crucible.cli.deploy import run_script_command

        return run_script_command(
            args.command,
            args.script,
            stage=args.stage,
            quiet=args.quiet,
            force=getattr(args, "force", False),
            adopt=getattr(args, "adopt", False),
            local=getattr(args, "local", False),
            watch=getattr(args, "watch", False),
            yes=getattr(args, "yes", False),
        )

    if args.command == "state":
        from crucible.cli.state import state_command

        return state_command(args.app, args.stage)

    if args.command == "providers":
        from crucible.cli.providers import providers_command

        return providers_command(args.module)

    parser.print_help()
    return ExitCode.SUCCESS
