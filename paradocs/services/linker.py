"""
linker.py — Pull newly approved reports into existing live Patterns.

For each Pattern in {emerging, active, declining}, in id order:

  1. Prefetch the report ids it already links.
  2. Page through approved reports in the Pattern's categories (and, when
     the Pattern has a first_report_date, with event_date between that
     date and now). Regional Patterns only take reports from their location.
  3. Insert the missing links (relevance 0.8) in batches; duplicates are
     ignored, so a rerun adds nothing.
  4. report_count is set to the number of links. If anything was added,
     status follows the growth rule, last_updated_at = now, and the Pattern
     is recorded as grown. A count that drifted from the links is repaired
     even when nothing was added.

Patterns without categories are skipped: with no category filter every
approved report would qualify.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from paradocs.core.clock import Deadline, as_utc
from paradocs.core.config import settings
from paradocs.core.errors import StoreUnavailableError
from paradocs.models.pattern import LINKABLE_STATUSES, Pattern, PatternReportLink
from paradocs.models.run import Checkpoint
from paradocs.services.lifecycle import growth_status
from paradocs.services.store import PatternStore

logger = logging.getLogger(__name__)

AUTO_LINK_RELEVANCE = 0.8


async def link_pattern(
    store: PatternStore,
    pattern: Pattern,
    now: datetime,
    batch_size: int | None = None,
) -> int:
    """Link every qualifying report `pattern` is missing. Returns links added."""
    if not pattern.categories:
        return 0
    batch_size = batch_size or settings.link_batch_size
    existing = await store.existing_link_ids(pattern.id)
    baseline = len(existing)
    location = pattern.metadata.get("location") if pattern.pattern_type == "regional_concentration" else None

    pending: list[PatternReportLink] = []
    categories: dict[str, str] = {}
    added: list[str] = []
    cursor = None
    while True:
        page = await store.fetch_link_candidates(
            pattern.categories, as_utc(pattern.first_report_date), now, cursor=cursor, location=location,
        )
        if not page:
            break
        for report in page:
            if report.id in existing:
                continue
            existing.add(report.id)
            categories[report.id] = report.category
            pending.append(PatternReportLink(
                pattern_id=pattern.id,
                report_id=report.id,
                relevance_score=AUTO_LINK_RELEVANCE,
            ))
            if len(pending) >= batch_size:
                added += await store.insert_links(pending, now)
                pending = []
        cursor = page[-1].id

    if pending:
        added += await store.insert_links(pending, now)

    count = baseline + len(added)
    if not added:
        if count != pattern.report_count:
            await store.update_pattern(pattern.id, {"report_count": count}, only_if_status=LINKABLE_STATUSES)
            logger.info("Pattern %s: report_count %d → %d (links)", pattern.id, pattern.report_count, count)
        return 0

    fields = {
        "report_count": count,
        "status": growth_status(pattern.first_detected_at, now),
        "last_updated_at": now,
        "metadata.auto_updated": True,
        "metadata.last_auto_update": now,
    }
    by_category = Counter(categories[rid] for rid in added)
    await store.update_pattern(
        pattern.id,
        fields,
        inc_fields={f"category_breakdown.{c}": n for c, n in by_category.items()},
        only_if_status=LINKABLE_STATUSES,
    )
    logger.info("Pattern %s: linked %d new reports (%d → %d)", pattern.id, len(added), baseline, count)
    return len(added)


async def link_pending_reports(
    store: PatternStore,
    checkpoint: Checkpoint,
    now: datetime,
    deadline: Deadline | None = None,
    batch_size: int | None = None,
) -> bool:
    """
    Sweep all live Patterns from checkpoint.cursor onward.

    Returns True when finished, False when the deadline stopped the sweep.
    """
    now = as_utc(now)
    summary = checkpoint.summary

    while True:
        if deadline is not None and deadline.exhausted():
            logger.info("Linker paused at cursor %s", checkpoint.cursor)
            return False

        page = await store.fetch_patterns(cursor=checkpoint.cursor, status_in=LINKABLE_STATUSES)
        if not page:
            break

        for pattern in page:
            if deadline is not None and deadline.exhausted():
                logger.info("Linker paused at cursor %s", checkpoint.cursor)
                return False
            summary.processed += 1
            try:
                added = await link_pattern(store, pattern, now, batch_size)
            except StoreUnavailableError as exc:
                logger.warning("Linking skipped for pattern %s: %s", pattern.id, exc)
                summary.errors.append(f"link {pattern.id}: {exc}")
                summary.skipped += 1
                added = 0
            if added:
                summary.linked += added
                checkpoint.mark_grown(pattern.id)
            checkpoint.cursor = pattern.id

    logger.info("Linker complete: %d links added so far this run", summary.linked)
    return True
