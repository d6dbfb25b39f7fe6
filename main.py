# main.py
"""CLI entry point for the serial continuity engine."""

from __future__ import annotations

import argparse
import sys

from orchestration import cli_runner


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and dispatch the requested command."""
    parser = argparse.ArgumentParser(description="Serial continuity engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Generate pending item bodies")
    run_parser.add_argument("work_file", help="Path to the YAML work file")
    run_parser.add_argument("--start", default=None, help="Item id to resume from")

    validate_parser = subparsers.add_parser(
        "validate", help="Check a partition's outlines against its boundary"
    )
    validate_parser.add_argument("work_file", help="Path to the YAML work file")
    validate_parser.add_argument("partition_id", help="Partition to validate")

    args = parser.parse_args(argv)
    if args.command == "run":
        return cli_runner.run(args.work_file, args.start)
    return cli_runner.validate(args.work_file, args.partition_id)


if __name__ == "__main__":
    sys.exit(main())
