"""
pipeline.py — One scheduled pattern-analysis run.

PHASES (in order, each depends on the previous)
───────────────────────────────────────────────
  geocode    optional: give coordinate-less reports a lat/lng
  cluster    cluster unassigned approved reports, reconcile each cluster
  surge      detect category surges, regional concentrations and weekly
             anomalies; reconcile each in pattern_key order
  link       pull new reports into every live Pattern
  lifecycle  recompute status for every non-archived Pattern
  guard      archive bulk-import artifacts created this week

RESUMING
────────
The run stops between units of work once the wall-clock budget is spent
and hands back a Checkpoint (phase, cursor, counters, grown Pattern ids)
together with a RunSummary whose `complete` is False. Passing that
checkpoint to the next call carries on where this one stopped. Clustering
needs no cursor: reconciled reports carry `hotspot_id` and drop out of the
next fetch. Because every write is keyed by a unique index, re-running a
partially finished phase is harmless.

USAGE
─────
    store = PatternStore(db)
    checkpoint = await store.load_checkpoint()
    summary, checkpoint = await run_pattern_analysis(store, checkpoint)
    await store.save_checkpoint(checkpoint)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from paradocs.ai.geocoder import Geocoder, geocode_pending_reports
from paradocs.core.clock import Deadline, as_utc, utcnow
from paradocs.core.config import settings
from paradocs.core.errors import StoreUnavailableError
from paradocs.models.report import ReportPoint
from paradocs.models.run import PHASES, Checkpoint, RunSummary
from paradocs.services.artifact_guard import archive_ingestion_artifacts
from paradocs.services.clustering import cluster_reports
from paradocs.services.lifecycle import run_lifecycle_pass
from paradocs.services.linker import link_pending_reports
from paradocs.services.registry import reconcile_cluster, reconcile_region, reconcile_surge, reconcile_weekly_anomaly
from paradocs.services.store import PatternStore
from paradocs.services.temporal import detect_category_surges, detect_regional_concentrations, detect_weekly_anomalies

logger = logging.getLogger(__name__)


async def run_pattern_analysis(
    store: PatternStore,
    checkpoint: Optional[Checkpoint] = None,
    now: Optional[datetime] = None,
    budget_seconds: Optional[float] = None,
    geocoder: Optional[Geocoder] = None,
) -> tuple[RunSummary, Checkpoint]:
    """
    Run (or resume) the pattern pipeline within `budget_seconds`.

    Returns the summary for the logical run so far and the checkpoint the
    caller should persist. On completion the returned checkpoint is a
    fresh one, ready for the next scheduled run.
    """
    now = as_utc(now) or utcnow()
    budget = budget_seconds if budget_seconds is not None else settings.run_budget_seconds
    deadline = Deadline(budget)

    if checkpoint is None or checkpoint.phase == "done":
        checkpoint = Checkpoint(started_at=now)
    elif checkpoint.started_at is None:
        checkpoint.started_at = now
    summary = checkpoint.summary

    logger.info(
        "Pattern analysis starting at phase=%s cursor=%s (budget %.0fs)",
        checkpoint.phase, checkpoint.cursor, budget,
    )

    try:
        while checkpoint.phase != "done":
            finished = await _run_phase(store, checkpoint, now, deadline, geocoder)
            if not finished:
                return _pause(checkpoint, now, deadline, "partial")
            _advance(checkpoint)
            if checkpoint.phase != "done" and deadline.exhausted():
                return _pause(checkpoint, now, deadline, "partial")
    except StoreUnavailableError as exc:
        # A page read failed after retries; stop here and resume next time
        logger.error("Pattern analysis halted in phase %s: %s", checkpoint.phase, exc)
        summary.errors.append(f"{checkpoint.phase}: {exc}")
        return _pause(checkpoint, now, deadline, "failed")

    summary.status = "partial" if summary.errors else "completed"
    summary.phase = "done"
    summary.complete = True
    summary.duration_ms = deadline.elapsed_ms
    logger.info(
        "Pattern analysis complete: processed=%d matched=%d inserted=%d linked=%d skipped=%d archived=%d errors=%d",
        summary.processed, summary.matched, summary.inserted, summary.linked,
        summary.skipped, summary.archived, len(summary.errors),
    )
    return summary, Checkpoint(updated_at=now)


def _advance(checkpoint: Checkpoint) -> None:
    checkpoint.phase = PHASES[PHASES.index(checkpoint.phase) + 1]
    checkpoint.cursor = None


def _pause(checkpoint: Checkpoint, now: datetime, deadline: Deadline, status: str) -> tuple[RunSummary, Checkpoint]:
    summary = checkpoint.summary
    summary.status = status
    summary.phase = checkpoint.phase
    summary.complete = False
    summary.duration_ms = deadline.elapsed_ms
    checkpoint.updated_at = now
    logger.info("Pattern analysis paused in phase %s at cursor %s", checkpoint.phase, checkpoint.cursor)
    return summary.model_copy(deep=True), checkpoint


async def _run_phase(
    store: PatternStore,
    checkpoint: Checkpoint,
    now: datetime,
    deadline: Deadline,
    geocoder: Optional[Geocoder],
) -> bool:
    phase = checkpoint.phase
    logger.info("Phase %s starting", phase)
    if phase == "geocode":
        return await _geocode_phase(store, checkpoint, geocoder)
    if phase == "cluster":
        return await _cluster_phase(store, checkpoint, now, deadline)
    if phase == "surge":
        return await _surge_phase(store, checkpoint, now, deadline)
    if phase == "link":
        return await link_pending_reports(store, checkpoint, now, deadline)
    if phase == "lifecycle":
        return await run_lifecycle_pass(store, checkpoint, now, deadline)
    if phase == "guard":
        result = await archive_ingestion_artifacts(store, now)
        checkpoint.summary.archived += result.archived
        checkpoint.summary.errors.extend(result.errors)
        return True
    raise ValueError(f"unknown phase {phase!r}")


# ── Phases ────────────────────────────────────────────────────────────────────

async def _geocode_phase(store: PatternStore, checkpoint: Checkpoint, geocoder: Optional[Geocoder]) -> bool:
    if geocoder is None or settings.geocode_batch_limit <= 0:
        return True
    _, errors = await geocode_pending_reports(store, geocoder, settings.geocode_batch_limit)
    checkpoint.summary.errors.extend(errors)
    checkpoint.summary.skipped += len(errors)
    return True


async def _load_all(fetch) -> list[ReportPoint]:
    """Drain a keyset-paginated report read."""
    rows: list[ReportPoint] = []
    cursor = None
    while True:
        page = await fetch(cursor)
        if not page:
            return rows
        rows.extend(page)
        cursor = page[-1].id


async def _cluster_phase(store: PatternStore, checkpoint: Checkpoint, now: datetime, deadline: Deadline) -> bool:
    summary = checkpoint.summary
    points = await _load_all(lambda cursor: store.fetch_unassigned_reports(cursor))
    clusters = cluster_reports(
        points,
        radius_km=settings.cluster_radius_km,
        min_members=settings.cluster_min_members,
        now=now,
    )
    by_id = {p.id: p for p in points}
    clustered = sum(c.report_count for c in clusters)
    logger.info("Clustering: %d unassigned reports → %d clusters", len(points), len(clusters))

    for cluster in clusters:
        if deadline.exhausted():
            # Reconciled members now carry hotspot_id; the rest get re-clustered on resume
            return False
        summary.processed += cluster.report_count
        try:
            result = await reconcile_cluster(store, cluster, by_id, now)
        except StoreUnavailableError as exc:
            logger.warning("Cluster at %.3f,%.3f skipped: %s", cluster.center_lat, cluster.center_lng, exc)
            summary.errors.append(f"cluster {cluster.center_lat:.3f},{cluster.center_lng:.3f}: {exc}")
            summary.skipped += 1
            continue
        if result.created:
            summary.inserted += 1
        else:
            summary.matched += 1
        summary.linked += result.linked
        if result.grew and not result.created:
            checkpoint.mark_grown(result.pattern_id)

    # Reports that joined no cluster wait for more data
    summary.processed += len(points) - clustered
    summary.skipped += len(points) - clustered
    return True


async def _surge_phase(store: PatternStore, checkpoint: Checkpoint, now: datetime, deadline: Deadline) -> bool:
    summary = checkpoint.summary
    baseline_days = settings.surge_baseline_days
    since = now - timedelta(days=baseline_days)
    reports = await _load_all(lambda cursor: store.fetch_recent_reports(since, cursor))

    surges = detect_category_surges(reports, now=now, baseline_days=baseline_days)
    regions = detect_regional_concentrations(reports, now=now, baseline_days=baseline_days)
    anomalies = detect_weekly_anomalies(reports, now=now, baseline_days=baseline_days)
    logger.info(
        "Temporal detection: %d reports → %d surge weeks, %d regions, %d weekly anomalies",
        len(reports), len(surges), len(regions), len(anomalies),
    )

    work = [(c.pattern_key, reconcile_surge, c) for c in surges]
    work += [(c.pattern_key, reconcile_region, c) for c in regions]
    work += [(a.pattern_key, reconcile_weekly_anomaly, a) for a in anomalies]
    work.sort(key=lambda item: item[0])

    # Work is sorted by key; the cursor is the last key reconciled
    for key, reconcile, candidate in work:
        if checkpoint.cursor is not None and key <= checkpoint.cursor:
            continue
        if deadline.exhausted():
            return False
        try:
            result = await reconcile(store, candidate, now)
        except StoreUnavailableError as exc:
            logger.warning("Temporal pattern %s skipped: %s", key, exc)
            summary.errors.append(f"surge {key}: {exc}")
            summary.skipped += 1
            checkpoint.cursor = key
            continue
        if result.created:
            summary.inserted += 1
        else:
            summary.matched += 1
        summary.linked += result.linked
        if result.grew and not result.created:
            checkpoint.mark_grown(result.pattern_id)
        checkpoint.cursor = key

    summary.processed += len(reports)
    return True
