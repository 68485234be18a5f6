"""Command line interface for the changes feed service."""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from .config import load_settings
from .service import build_sequence_store, configure_logging
from .service import main as run_service


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CouchDB changes feed consumer")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Consume the changes feed (default)")

    sequence_parser = subparsers.add_parser(
        "sequence", help="Inspect or reset the stored feed sequence"
    )
    sequence_commands = sequence_parser.add_subparsers(
        dest="sequence_command", required=True
    )
    sequence_commands.add_parser("show", help="Print the stored sequence")
    reset_parser = sequence_commands.add_parser(
        "reset", help="Overwrite the stored sequence"
    )
    reset_parser.add_argument(
        "--expected",
        help="Sequence currently stored; the reset is refused if it differs",
        default=None,
    )
    reset_parser.add_argument(
        "--to",
        dest="new_sequence",
        help="Sequence to store (defaults to 0, the start of the feed)",
        default=None,
    )
    reset_parser.add_argument(
        "--force",
        action="store_true",
        help="Reset without checking the stored sequence",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command in (None, "run"):
        run_service()
        return 0

    settings = load_settings()
    configure_logging(settings.log_level)
    store = build_sequence_store(settings)

    if args.sequence_command == "show":
        print(store.read())
        return 0

    if args.sequence_command == "reset":
        try:
            store.reset(
                expected=args.expected,
                new=args.new_sequence,
                force=args.force,
            )
        except ValueError as exc:
            print(f"Refusing to reset sequence: {exc}", file=sys.stderr)
            return 1
        print(f"Sequence reset to {store.read()}")
        return 0

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":
    sys.exit(main())
