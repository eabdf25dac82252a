"""
lifecycle.py — Time-driven status machine for Patterns.

STATUS RULES
────────────
  archived                         terminal, only the artifact guard sets it
  grew this run                    growth_status(): emerging if first detected
                                   < 14 days ago, otherwise active
  otherwise, by days since last_updated_at:
      < 7   emerging
      < 30  active
      < 90  declining
      ≥ 90  historical

A historical Pattern that picks up new reports becomes emerging/active
again through the growth rule. The pass only writes rows whose status
actually changes.
"""

from __future__ import annotations

import logging
from datetime import datetime

from paradocs.core.clock import Deadline, as_utc, days_between
from paradocs.core.errors import StoreUnavailableError
from paradocs.models.pattern import Pattern
from paradocs.models.run import Checkpoint
from paradocs.services.store import PatternStore

logger = logging.getLogger(__name__)

EMERGING_WINDOW_DAYS = 14

_STALENESS_TABLE = [
    (7, "emerging"),
    (30, "active"),
    (90, "declining"),
]


def status_for_staleness(days_since_update: float) -> str:
    for limit, status in _STALENESS_TABLE:
        if days_since_update < limit:
            return status
    return "historical"


def growth_status(first_detected_at: datetime, now: datetime) -> str:
    """Status for a Pattern that gained reports: young ones are still emerging."""
    if days_between(first_detected_at, now) < EMERGING_WINDOW_DAYS:
        return "emerging"
    return "active"


def next_status(pattern: Pattern, now: datetime, grew: bool = False) -> str:
    if pattern.status == "archived":
        return "archived"
    if grew:
        return growth_status(pattern.first_detected_at, now)
    return status_for_staleness(days_between(pattern.last_updated_at, now))


async def run_lifecycle_pass(
    store: PatternStore,
    checkpoint: Checkpoint,
    now: datetime,
    deadline: Deadline | None = None,
) -> bool:
    """
    Re-evaluate every non-archived Pattern, resuming from checkpoint.cursor.

    Returns True when the sweep finished, False when the deadline stopped it
    (checkpoint.cursor then points at the last Pattern handled).
    """
    now = as_utc(now)
    grown = set(checkpoint.grown_pattern_ids)
    summary = checkpoint.summary
    changed = 0

    while True:
        if deadline is not None and deadline.exhausted():
            logger.info("Lifecycle pass paused at cursor %s (%d changed)", checkpoint.cursor, changed)
            return False

        page = await store.fetch_patterns(cursor=checkpoint.cursor, status_nin=["archived"])
        if not page:
            break

        for pattern in page:
            summary.processed += 1
            new_status = next_status(pattern, now, grew=pattern.id in grown)
            if new_status != pattern.status:
                try:
                    await store.update_pattern(
                        pattern.id,
                        {"status": new_status},
                        only_if_status=[pattern.status],
                    )
                    changed += 1
                    logger.debug("Pattern %s: %s → %s", pattern.id, pattern.status, new_status)
                except StoreUnavailableError as exc:
                    logger.warning("Lifecycle update skipped for pattern %s: %s", pattern.id, exc)
                    summary.errors.append(f"lifecycle {pattern.id}: {exc}")
                    summary.skipped += 1
            checkpoint.cursor = pattern.id

    logger.info("Lifecycle pass complete: %d status changes", changed)
    return True
