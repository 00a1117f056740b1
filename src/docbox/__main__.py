"""Command line preview of box evaluation.

Usage:
    python -m docbox evaluate box.json
    python -m docbox evaluate - < box.json
"""

import argparse
import json
import sys
from pathlib import Path

from docbox.config import configure_logging, get_logger
from docbox.snapshot import evaluate_snapshot, load_snapshot


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docbox",
        description="Document box completeness and payment preview",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    evaluate = subparsers.add_parser(
        "evaluate", help="Print checklist, completion and payment status for a box snapshot"
    )
    evaluate.add_argument("snapshot", help="Path to a box snapshot JSON file, or - for stdin")
    evaluate.add_argument("--indent", type=int, default=2, help="JSON indent (default: 2)")
    evaluate.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override DOCBOX_LOG_LEVEL",
    )
    return parser


def _read(source: str) -> dict:
    if source == "-":
        return json.load(sys.stdin)
    return json.loads(Path(source).read_text(encoding="utf-8"))


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level)
    logger = get_logger(__name__, component="cli")

    try:
        snapshot = load_snapshot(_read(args.snapshot))
    except (OSError, ValueError, KeyError) as e:
        logger.error("snapshot_load_failed", source=args.snapshot, error=str(e))
        return 1

    print(json.dumps(evaluate_snapshot(snapshot), indent=args.indent))
    return 0


if __name__ == "__main__":
    sys.exit(main())
