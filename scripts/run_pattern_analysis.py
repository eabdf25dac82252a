#!/usr/bin/env python3
"""
run_pattern_analysis.py — Run the pattern pipeline from a shell or system cron.

Usage (from the repo root):
    # Run / resume the full pipeline with the configured budget
    python scripts/run_pattern_analysis.py

    # Give this invocation 60 seconds, then checkpoint
    python scripts/run_pattern_analysis.py --budget 60

    # Only archive bulk-import artifacts (preview first)
    python scripts/run_pattern_analysis.py --guard-only --dry-run
    python scripts/run_pattern_analysis.py --guard-only

    # Throw away a half-finished run and start from the first phase
    python scripts/run_pattern_analysis.py --reset

What it does
────────────
Shares the checkpoint document with POST /api/v1/cron/analyze-patterns, so a
run started by the HTTP scheduler can be finished here and vice versa. The
summary is printed as JSON; the exit code is 0 for completed runs, 2 for
partial ones (budget spent, or per-item errors) and 1 when the store failed.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv
load_dotenv(ROOT / ".env")

import certifi
from motor.motor_asyncio import AsyncIOMotorClient

from paradocs.ai.geocoder import geocoder
from paradocs.core.clock import utcnow
from paradocs.core.config import settings
from paradocs.core.database import ensure_indexes
from paradocs.services.artifact_guard import archive_ingestion_artifacts
from paradocs.services.pipeline import run_pattern_analysis
from paradocs.services.store import PatternStore

EXIT_CODES = {"completed": 0, "partial": 2, "failed": 1}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Paradocs pattern pipeline.")
    parser.add_argument("--budget", type=float, default=None, help="Wall-clock budget in seconds")
    parser.add_argument("--guard-only", action="store_true", help="Only run the ingestion-artifact guard")
    parser.add_argument("--dry-run", action="store_true", help="With --guard-only: report, don't archive")
    parser.add_argument("--reset", action="store_true", help="Discard any saved checkpoint first")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    client = AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=5000,
        tlsCAFile=certifi.where(),
    )
    db = client[settings.mongo_db_name]

    try:
        await client.admin.command("ping")
        await ensure_indexes(db)
        store = PatternStore(db)

        if args.guard_only:
            result = await archive_ingestion_artifacts(store, utcnow(), dry_run=args.dry_run)
            print(json.dumps(result.model_dump(), indent=2, default=str))
            return 0 if not result.errors else 2

        checkpoint = None if args.reset else await store.load_checkpoint()
        summary, checkpoint = await run_pattern_analysis(
            store,
            checkpoint,
            budget_seconds=args.budget,
            geocoder=geocoder,
        )
        await store.save_checkpoint(checkpoint)
        print(json.dumps(summary.model_dump(), indent=2, default=str))
        if not summary.complete and summary.status == "partial":
            print(f"\nRun paused in phase '{summary.phase}'. Re-run to resume.")
        return EXIT_CODES[summary.status]
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
