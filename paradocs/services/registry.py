"""
registry.py — Reconcile transient candidates into persisted Patterns.

  reconcile_cluster()         geographic Cluster → geographic_cluster Pattern
  reconcile_surge()           SurgeCandidate     → temporal_anomaly Pattern
  reconcile_region()          RegionalCandidate  → regional_concentration Pattern
  reconcile_weekly_anomaly()  WeeklyAnomaly      → temporal_anomaly Pattern

MERGE RULE (clusters)
─────────────────────
Look for geographic Patterns whose centroid lies within ±merge_tolerance_deg
of the cluster centroid, archived ones included. If several match, the
nearest centroid wins; ties go to the smallest id. A match absorbs the
members it does not already link; otherwise a new Pattern is upserted on

    pattern_key = "geographic_cluster:{lat:.1f}:{lng:.1f}"

so a rerun, or a second worker racing this one, lands on the same row.
Either way the members get `hotspot_id` so clustering skips them next time.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from paradocs.core.clock import as_utc, days_between
from paradocs.core.config import settings
from paradocs.models.pattern import (
    Cluster,
    Pattern,
    PatternReportLink,
    RegionalCandidate,
    SurgeCandidate,
    WeeklyAnomaly,
)
from paradocs.models.report import ReportPoint, category_name
from paradocs.services.clustering import (
    ACTIVE_WINDOW_DAYS,
    calculate_intensity,
    cluster_scores,
    days_active_since,
)
from paradocs.services.geo import haversine_km
from paradocs.services.lifecycle import growth_status
from paradocs.services.store import PatternStore
from paradocs.services.temporal import anomaly_scores, regional_scores, surge_scores

logger = logging.getLogger(__name__)

CLUSTER_RELEVANCE = 1.0
SURGE_RELEVANCE = 1.0
REGION_RELEVANCE = 1.0


@dataclass
class ReconcileResult:
    pattern_id: str
    created: bool
    linked: int

    @property
    def grew(self) -> bool:
        return self.linked > 0


def geographic_pattern_key(lat: float, lng: float) -> str:
    return f"geographic_cluster:{lat:.1f}:{lng:.1f}"


def hotspot_title(cluster: Cluster) -> str:
    return (
        f"{category_name(cluster.primary_category)} Hotspot: {cluster.report_count} Reports "
        f"near {cluster.center_lat:.2f}, {cluster.center_lng:.2f}"
    )


def pick_nearest(patterns: list[Pattern], lat: float, lng: float) -> Optional[Pattern]:
    """Nearest centroid to (lat, lng); equal distances resolve to the smallest id."""
    located = [p for p in patterns if p.center_lat is not None and p.center_lng is not None]
    if not located:
        return None
    return min(located, key=lambda p: (haversine_km(lat, lng, p.center_lat, p.center_lng), p.id))


def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None or b is None:
        return as_utc(a or b)
    return max(as_utc(a), as_utc(b))


def _earlier(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None or b is None:
        return as_utc(a or b)
    return min(as_utc(a), as_utc(b))


# ── Geographic clusters ───────────────────────────────────────────────────────

async def reconcile_cluster(
    store: PatternStore,
    cluster: Cluster,
    points: Mapping[str, ReportPoint],
    now: datetime,
    tolerance_deg: float | None = None,
) -> ReconcileResult:
    """Merge `cluster` into the nearest existing Pattern, or create one."""
    tolerance = tolerance_deg if tolerance_deg is not None else settings.merge_tolerance_deg
    nearby = await store.find_patterns_near(cluster.center_lat, cluster.center_lng, tolerance)
    target = pick_nearest(nearby, cluster.center_lat, cluster.center_lng)
    if target is not None:
        return await _merge_cluster(store, target, cluster, points, now)

    key = geographic_pattern_key(cluster.center_lat, cluster.center_lng)
    significance, confidence = cluster_scores(
        cluster.report_count, cluster.density, len(cluster.category_breakdown)
    )
    pattern, created = await store.upsert_pattern(
        key,
        on_insert={
            "pattern_type": "geographic_cluster",
            "status": "emerging",
            "center_lat": cluster.center_lat,
            "center_lng": cluster.center_lng,
            "radius_km": cluster.radius_km,
            "categories": cluster.categories,
            "category_breakdown": cluster.category_breakdown,
            "report_count": cluster.report_count,
            "intensity_score": round(cluster.intensity_score, 2),
            "is_active": cluster.is_active,
            "first_report_date": cluster.first_report_date,
            "last_report_date": cluster.last_report_date,
            "significance_score": significance,
            "confidence_score": confidence,
            "title": hotspot_title(cluster),
            "ai_summary": None,
            "detection_method": "clustering",
            "metadata": {
                "density": round(cluster.density, 6),
                "has_verified": cluster.has_verified,
                "primary_category": cluster.primary_category,
            },
            "first_detected_at": now,
            "created_at": now,
            "last_updated_at": now,
        },
    )
    if not created:
        # Another run created this key between our lookup and the upsert
        return await _merge_cluster(store, pattern, cluster, points, now)

    links = [_cluster_link(pattern, points[rid]) for rid in cluster.report_ids]
    inserted = await store.insert_links(links, now)
    await store.assign_hotspot(cluster.report_ids, pattern.id)
    logger.info("Created pattern %s (%s, %d reports)", pattern.id, key, cluster.report_count)
    return ReconcileResult(pattern.id, created=True, linked=len(inserted))


def _cluster_link(pattern: Pattern, point: ReportPoint) -> PatternReportLink:
    distance = None
    if pattern.center_lat is not None and pattern.center_lng is not None and point.has_coordinates:
        distance = round(haversine_km(pattern.center_lat, pattern.center_lng, point.lat, point.lng), 3)
    return PatternReportLink(
        pattern_id=pattern.id,
        report_id=point.id,
        relevance_score=CLUSTER_RELEVANCE,
        distance_km=distance,
    )


async def _merge_cluster(
    store: PatternStore,
    pattern: Pattern,
    cluster: Cluster,
    points: Mapping[str, ReportPoint],
    now: datetime,
) -> ReconcileResult:
    existing = await store.existing_link_ids(pattern.id)
    fresh = [rid for rid in cluster.report_ids if rid not in existing]
    inserted = await store.insert_links([_cluster_link(pattern, points[rid]) for rid in fresh], now)

    added = Counter(points[rid].category for rid in inserted)
    breakdown = dict(pattern.category_breakdown)
    for category, count in added.items():
        breakdown[category] = breakdown.get(category, 0) + count

    total = await store.count_links(pattern.id)
    first_date = _earlier(pattern.first_report_date, cluster.first_report_date)
    last_date = _later(pattern.last_report_date, cluster.last_report_date)
    has_verified = bool(pattern.metadata.get("has_verified")) or cluster.has_verified
    density = max(float(pattern.metadata.get("density") or 0.0), cluster.density)
    significance, confidence = cluster_scores(total, density, len(breakdown))

    fields = {
        "report_count": total,
        "categories": sorted(breakdown),
        "last_report_date": last_date,
        "first_report_date": first_date,
        "is_active": last_date is not None and days_between(last_date, now) <= ACTIVE_WINDOW_DAYS,
        "intensity_score": round(calculate_intensity(total, days_active_since(first_date, now), has_verified), 2),
        "significance_score": significance,
        "confidence_score": confidence,
        "metadata.density": round(density, 6),
        "metadata.has_verified": has_verified,
    }
    if inserted:
        fields["last_updated_at"] = now
        if pattern.status != "archived":
            fields["status"] = growth_status(pattern.first_detected_at, now)

    await store.update_pattern(
        pattern.id,
        fields,
        inc_fields={f"category_breakdown.{c}": n for c, n in added.items()},
    )
    await store.assign_hotspot(cluster.report_ids, pattern.id)
    logger.info("Merged cluster into pattern %s (+%d links, %d total)", pattern.id, len(inserted), total)
    return ReconcileResult(pattern.id, created=False, linked=len(inserted))


# ── Volume candidates (surges, regions, weekly anomalies) ─────────────────────

async def _link_members(
    store: PatternStore,
    pattern: Pattern,
    report_ids: list[str],
    now: datetime,
    relevance: float,
) -> tuple[list[str], int]:
    """Link the members `pattern` lacks. Returns (inserted ids, total links)."""
    existing = await store.existing_link_ids(pattern.id)
    links = [
        PatternReportLink(pattern_id=pattern.id, report_id=rid, relevance_score=relevance)
        for rid in report_ids
        if rid not in existing
    ]
    inserted = await store.insert_links(links, now)
    return inserted, await store.count_links(pattern.id)


def _growth_fields(pattern: Pattern, created: bool, inserted: list[str], now: datetime) -> dict:
    if not inserted or created:
        return {}
    fields: dict = {"last_updated_at": now}
    if pattern.status != "archived":
        fields["status"] = growth_status(pattern.first_detected_at, now)
    return fields


async def reconcile_surge(store: PatternStore, candidate: SurgeCandidate, now: datetime) -> ReconcileResult:
    """Upsert the surge Pattern for candidate.pattern_key and link its week's reports."""
    significance, confidence = surge_scores(candidate)
    pattern, created = await store.upsert_pattern(
        candidate.pattern_key,
        on_insert={
            "pattern_type": "temporal_anomaly",
            "status": "emerging",
            "categories": [candidate.category],
            "first_report_date": candidate.week_start,
            "last_report_date": candidate.week_end,
            "title": candidate.title,
            "ai_summary": candidate.summary,
            "detection_method": "temporal_analysis",
            "is_active": True,
            "first_detected_at": now,
            "created_at": now,
            "last_updated_at": now,
        },
        on_update={
            "significance_score": significance,
            "confidence_score": confidence,
            "metadata.category": candidate.category,
            "metadata.ratio": round(candidate.ratio, 4),
            "metadata.user_reports": candidate.user_reports,
            "metadata.ingested_reports": candidate.ingested_reports,
            "metadata.last_analyzed": now,
        },
    )

    inserted, total = await _link_members(store, pattern, candidate.report_ids, now, SURGE_RELEVANCE)
    fields = {
        "report_count": total,
        "category_breakdown": {candidate.category: total},
        **_growth_fields(pattern, created, inserted, now),
    }
    await store.update_pattern(pattern.id, fields)

    logger.info(
        "%s surge pattern %s (+%d links)",
        "Created" if created else "Updated", candidate.pattern_key, len(inserted),
    )
    return ReconcileResult(pattern.id, created=created, linked=len(inserted))


async def reconcile_region(store: PatternStore, candidate: RegionalCandidate, now: datetime) -> ReconcileResult:
    """Upsert the regional_concentration Pattern for candidate.pattern_key."""
    significance, confidence = regional_scores(candidate.report_count)
    pattern, created = await store.upsert_pattern(
        candidate.pattern_key,
        on_insert={
            "pattern_type": "regional_concentration",
            "status": "emerging",
            "categories": [candidate.category],
            "title": candidate.title,
            "ai_summary": candidate.summary,
            "detection_method": "regional_analysis",
            "is_active": True,
            "first_detected_at": now,
            "created_at": now,
            "last_updated_at": now,
        },
        on_update={
            "significance_score": significance,
            "confidence_score": confidence,
            "metadata.location": candidate.location,
            "metadata.category": candidate.category,
            "metadata.last_analyzed": now,
        },
    )

    inserted, total = await _link_members(store, pattern, candidate.report_ids, now, REGION_RELEVANCE)
    fields = {
        "report_count": total,
        "category_breakdown": {candidate.category: total},
        "first_report_date": _earlier(pattern.first_report_date, candidate.first_report_date),
        "last_report_date": _later(pattern.last_report_date, candidate.last_report_date),
        **_growth_fields(pattern, created, inserted, now),
    }
    await store.update_pattern(pattern.id, fields)

    logger.info(
        "%s regional pattern %s (+%d links)",
        "Created" if created else "Updated", candidate.pattern_key, len(inserted),
    )
    return ReconcileResult(pattern.id, created=created, linked=len(inserted))


async def reconcile_weekly_anomaly(store: PatternStore, anomaly: WeeklyAnomaly, now: datetime) -> ReconcileResult:
    """Upsert the temporal_{week} Pattern; the z-score is refreshed on every run."""
    significance, confidence = anomaly_scores(anomaly)
    pattern, created = await store.upsert_pattern(
        anomaly.pattern_key,
        on_insert={
            "pattern_type": "temporal_anomaly",
            "status": "active",
            "categories": anomaly.categories,
            "first_report_date": anomaly.week_start,
            "last_report_date": anomaly.week_end,
            "title": anomaly.title,
            "ai_summary": anomaly.summary,
            "detection_method": "temporal_analysis",
            "is_active": True,
            "first_detected_at": now,
            "created_at": now,
            "last_updated_at": now,
        },
        on_update={
            "significance_score": significance,
            "confidence_score": confidence,
            "metadata.z_score": round(anomaly.z_score, 4),
            "metadata.is_spike": anomaly.is_spike,
            "metadata.mean_count": round(anomaly.mean_count, 4),
            "metadata.std_dev": round(anomaly.std_dev, 4),
            "metadata.last_analyzed": now,
        },
    )

    inserted, total = await _link_members(store, pattern, anomaly.report_ids, now, SURGE_RELEVANCE)
    fields = {"report_count": total, **_growth_fields(pattern, created, inserted, now)}
    if created:
        fields["category_breakdown"] = dict(anomaly.category_breakdown)
    await store.update_pattern(pattern.id, fields)

    logger.info(
        "%s weekly anomaly %s (z=%.2f, +%d links)",
        "Created" if created else "Updated", anomaly.pattern_key, anomaly.z_score, len(inserted),
    )
    return ReconcileResult(pattern.id, created=created, linked=len(inserted))
