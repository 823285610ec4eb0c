"""CLI helper for printing a harvest run summary."""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from . import db


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the run summary CLI."""

    parser = argparse.ArgumentParser(
        description="Show the outcome of a harvest run.",
    )
    parser.add_argument(
        "--run-id",
        type=int,
        help="Run ID to summarise.",
    )
    parser.add_argument(
        "--latest",
        action="store_true",
        help="Summarise the most recent run.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the run summary CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    db.initialize_schema()
    run_id = args.run_id
    if args.latest and run_id is None:
        run_id = db.latest_run_id()
    if run_id is None:
        parser.error("You must provide --run-id or --latest")

    try:
        run = db.get_run(run_id)
    except db.RunNotFoundError as exc:
        parser.error(str(exc))

    print(f"Run {run['id']} ({run['run_key']}, trigger={run['trigger']})")
    print(f"  status: {run['status']}")
    print(f"  reason: {run['reason'] or '-'}")
    if run.get("error_code"):
        print(f"  error_code: {run['error_code']}")
    print(f"  pages_processed: {run['pages_processed']}")
    print(f"  records_ingested: {run['records_ingested']}")
    print(f"  started_at: {run['started_at']}")
    print(f"  ended_at: {run['ended_at'] or '-'}")
    if run.get("output_path"):
        print(f"  output: {run['output_path']}")

    checkpoint = run.get("checkpoint") or {}
    if checkpoint:
        print("\nCheckpoint:")
        print(json.dumps(checkpoint, indent=2, sort_keys=True))

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
