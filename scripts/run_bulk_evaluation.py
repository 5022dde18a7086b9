#!/usr/bin/env python3
"""
Run a bulk evaluation CSV through the assistant and write a CSV report.

Usage:
    python scripts/run_bulk_evaluation.py cases.csv --concurrency 3
"""
import sys
import asyncio
import argparse
import logging
import pathlib

from farm_assistant.config import configure_logging
from farm_assistant.services.bulk_evaluation import (
    DEFAULT_CONCURRENCY, BulkInputError, export_results, parse_bulk_csv, run_bulk_evaluation
)
from farm_assistant.services.db_operations import create_tables, get_engine

logger = logging.getLogger("run_bulk_evaluation")


async def run(csv_path: pathlib.Path, concurrency: int) -> int:
    try:
        cases = parse_bulk_csv(csv_path.read_text(encoding="utf-8"))
    except BulkInputError as e:
        logger.error("Invalid CSV: %s", str(e))
        return 1

    if not cases:
        logger.error("No test cases in %s", csv_path)
        return 1

    await create_tables(get_engine())
    results = await run_bulk_evaluation(cases, concurrency)
    export = export_results(results)

    failed = [result for result in results if result.status == "error"]
    print(f"Evaluated {len(results)} cases: {len(results) - len(failed)} succeeded, {len(failed)} failed")
    for result in failed:
        print(f"  {result.case_id}: {result.error}")
    print(f"Report: {export['download_url']} ({export['row_count']} rows)")
    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(description="Run bulk query evaluation from a CSV file")
    parser.add_argument("csv", type=pathlib.Path, help="Path to the test case CSV")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY,
                        help="Cases evaluated at the same time")
    args = parser.parse_args()

    if not args.csv.exists():
        print(f"Error: CSV file not found at {args.csv}")
        sys.exit(1)
    if args.concurrency < 1:
        print("Error: --concurrency must be at least 1")
        sys.exit(1)

    configure_logging()
    sys.exit(asyncio.run(run(args.csv, args.concurrency)))


if __name__ == "__main__":
    main()
