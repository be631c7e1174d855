"""Command-line interface for braid.

Commands:
- check: build a merge layer from a manifest and run one step through it
- inspect: summarize a saved merge layer checkpoint
"""
from __future__ import annotations

import argparse
from pathlib import Path

from braid.command import CheckCommand, Command, InspectCommand
from braid.config.manifest import Manifest


class _Args(argparse.Namespace):
    """Typed namespace for CLI arguments."""

    command: str | None = None
    check_manifest: Path | None = None
    save: Path | None = None
    checkpoint: Path | None = None


class CLI(argparse.ArgumentParser):
    """Minimal command-line interface with one subcommand per intent."""

    def __init__(self) -> None:
        """Set up CLI with subcommands."""
        super().__init__(
            prog="braid",
            description="braid - multiplicative merge layers over pluggable branches.",
        )

        _ = self.add_argument(
            "--version",
            action="version",
            version="%(prog)s 0.1.0",
            help="Show the version and exit.",
        )

        subparsers = self.add_subparsers(
            dest="command",
            parser_class=argparse.ArgumentParser,
        )

        check_parser = subparsers.add_parser(
            "check",
            help="Build a merge from a manifest and run forward/backward/gradient once.",
        )
        _ = check_parser.add_argument(
            "check_manifest",
            type=Path,
            metavar="manifest",
            help="Manifest path (.json, .yml, or .yaml).",
        )
        _ = check_parser.add_argument(
            "--save",
            type=Path,
            default=None,
            help="Write the checked merge to this checkpoint (.pt or .safetensors).",
        )

        inspect_parser = subparsers.add_parser(
            "inspect",
            help="Summarize a saved merge layer.",
        )
        _ = inspect_parser.add_argument(
            "checkpoint",
            type=Path,
            help="Checkpoint path (.pt or .safetensors).",
        )

    def parse_command(self, argv: list[str] | None = None) -> Command:
        """Parse CLI arguments into a typed command payload."""
        args = self.parse_args(argv, namespace=_Args())

        match args.command:
            case "check":
                if args.check_manifest is None:
                    raise ValueError("check requires a manifest path.")
                return CheckCommand(
                    manifest=Manifest.from_path(args.check_manifest),
                    save=args.save,
                )
            case "inspect":
                if args.checkpoint is None:
                    raise ValueError("inspect requires a checkpoint path.")
                return InspectCommand(checkpoint=args.checkpoint)
            case None:
                self.print_help()
                raise SystemExit(2)
            case _:
                raise ValueError(f"Invalid command: {args.command}")
