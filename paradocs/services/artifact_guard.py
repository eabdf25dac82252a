"""
artifact_guard.py — Archive Patterns produced by a one-off bulk import.

A large backfill lands thousands of reports in one week, which the surge
detector and clusterer then read as a real-world flap. Suspects are
Patterns created in the last `artifact_window_days` that are still
emerging/active and either

  - link at least `artifact_report_threshold` reports, or
  - carry surge language from such an import in their title ("1000", "1300").

Archival only flips status and stamps metadata.archived_reason /
metadata.archived_at. Rows and links stay, so a mistaken archive can be
undone by hand.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from paradocs.core.clock import as_utc
from paradocs.core.config import settings
from paradocs.core.errors import StoreUnavailableError
from paradocs.models.pattern import Pattern
from paradocs.models.run import GuardResult, GuardSample
from paradocs.services.store import PatternStore

logger = logging.getLogger(__name__)

ARCHIVE_REASON = "bulk_ingestion_surge"
SUSPECT_STATUSES = ("emerging", "active")
SUSPECT_TITLE_MARKERS = ("1000", "1300")
_SAMPLE_LIMIT = 10


def is_ingestion_artifact(pattern: Pattern, threshold: int | None = None) -> bool:
    threshold = threshold if threshold is not None else settings.artifact_report_threshold
    if pattern.report_count >= threshold:
        return True
    return any(marker in (pattern.title or "") for marker in SUSPECT_TITLE_MARKERS)


async def archive_ingestion_artifacts(
    store: PatternStore,
    now: datetime,
    dry_run: bool = False,
) -> GuardResult:
    now = as_utc(now)
    since = now - timedelta(days=settings.artifact_window_days)
    recent = await store.fetch_recent_patterns(since, SUSPECT_STATUSES)
    suspects = [p for p in recent if is_ingestion_artifact(p)]

    logger.info("Artifact guard: %d suspect patterns (dry_run=%s)", len(suspects), dry_run)
    samples = [
        GuardSample(id=p.id, title=p.title[:60], report_count=p.report_count, status=p.status)
        for p in suspects[:_SAMPLE_LIMIT]
    ]

    archived = 0
    errors: list[str] = []
    if not dry_run:
        for pattern in suspects:
            try:
                matched = await store.update_pattern(
                    pattern.id,
                    {
                        "status": "archived",
                        "metadata.archived_reason": ARCHIVE_REASON,
                        "metadata.archived_at": now,
                    },
                    only_if_status=SUSPECT_STATUSES,
                )
            except StoreUnavailableError as exc:
                logger.warning("Could not archive pattern %s: %s", pattern.id, exc)
                errors.append(f"archive {pattern.id}: {exc}")
                continue
            if matched:
                archived += 1
                logger.info("Archived pattern %s (%s)", pattern.id, pattern.title[:60])

    return GuardResult(
        dry_run=dry_run,
        patterns_found=len(suspects),
        archived=archived,
        samples=samples,
        errors=errors,
    )
