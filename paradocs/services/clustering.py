"""
clustering.py — Greedy spatial clustering of reports into hotspot candidates.

ALGORITHM
─────────
Single pass over the reports in the caller's order:

  1. Skip any report already assigned to a cluster.
  2. Gather every other unassigned report within `radius_km` (haversine)
     of the current one. A latitude-sorted index plus a bounding box keeps
     this from being a full O(n²) scan.
  3. If the group, seed included, has at least `min_members` reports,
     emit a Cluster and mark all of them assigned.

The result depends on input order: a report sits in the cluster of the
first seed that reaches it. Callers pass reports sorted by id so that a
rerun over the same rows gives the same clusters.

USAGE
─────
    from paradocs.services.clustering import cluster_reports
    clusters = cluster_reports(points, radius_km=50, min_members=3)
    for c in clusters:
        c.primary_category, c.report_count, c.intensity_score
"""

from __future__ import annotations

import bisect
import math
from collections import Counter
from datetime import datetime
from typing import Iterable, Sequence

from paradocs.core.clock import as_utc, days_between, utcnow
from paradocs.models.pattern import Cluster
from paradocs.models.report import ReportPoint
from paradocs.services.geo import KM_PER_DEGREE_LAT, bounding_box, haversine_km

ACTIVE_WINDOW_DAYS = 90
DEFAULT_DAYS_ACTIVE = 365   # used when no member has an event date

# ── Intensity components ──────────────────────────────────────────────────────

_MAX_BASE_SCORE = 50
_BASE_LOG_SCALE = 25
_RECENCY_STEPS = [
    (30, 30),
    (90, 20),
    (365, 10),
]
_RECENCY_FLOOR = 5
_VERIFICATION_BONUS = 20


def calculate_intensity(report_count: int, days_active: float, has_verified: bool) -> float:
    """
    Hotspot intensity in [0, 100].

        min(100, min(50, log10(n + 1) * 25) + recency + verification)

    recency is 30 / 20 / 10 / 5 for days_active ≤ 30 / 90 / 365 / older.
    Non-decreasing in report_count with the other inputs fixed.
    """
    base = min(_MAX_BASE_SCORE, math.log10(max(report_count, 0) + 1) * _BASE_LOG_SCALE)
    recency = _RECENCY_FLOOR
    for limit, points in _RECENCY_STEPS:
        if days_active <= limit:
            recency = points
            break
    bonus = _VERIFICATION_BONUS if has_verified else 0
    return min(100.0, base + recency + bonus)


def days_active_since(first_date: datetime | None, now: datetime) -> int:
    """Whole days (rounded up) since the first event; DEFAULT_DAYS_ACTIVE when unknown."""
    if first_date is None:
        return DEFAULT_DAYS_ACTIVE
    return max(0, math.ceil(days_between(first_date, now)))


def cluster_density(count: int, spread_km: float) -> float:
    """Reports per km² of the circle spanned by the members (radius floored at 1 km)."""
    radius = max(spread_km, 1.0)
    return count / (math.pi * radius ** 2)


def cluster_scores(report_count: int, density: float, category_count: int) -> tuple[float, float]:
    """(significance, confidence), both in [0, 1]."""
    significance = min(report_count / 50, 1) * 0.7 + min(category_count / 5, 1) * 0.3
    confidence = min(report_count / 20, 1) * 0.6 + min(density / 10, 1) * 0.4
    return round(significance, 4), round(confidence, 4)


# ── Clustering ────────────────────────────────────────────────────────────────

def cluster_reports(
    reports: Iterable[ReportPoint],
    radius_km: float = 50.0,
    min_members: int = 3,
    now: datetime | None = None,
) -> list[Cluster]:
    """
    Group reports into Clusters of at least `min_members` within `radius_km`.

    Reports without coordinates are ignored. Every report lands in at most
    one Cluster. Deterministic for a given input order and `now`.
    """
    now = as_utc(now) or utcnow()
    points = [r for r in reports if r.has_coordinates]
    if len(points) < max(min_members, 1):
        return []

    # Latitude index: candidates for seed i lie in a contiguous slice of it
    by_lat = sorted(range(len(points)), key=lambda i: (points[i].lat, i))
    lats = [points[i].lat for i in by_lat]
    lat_window = radius_km / KM_PER_DEGREE_LAT

    visited: set[int] = set()
    clusters: list[Cluster] = []

    for i, seed in enumerate(points):
        if i in visited:
            continue

        box = bounding_box(seed.lat, seed.lng, radius_km)
        lo = bisect.bisect_left(lats, seed.lat - lat_window)
        hi = bisect.bisect_right(lats, seed.lat + lat_window)

        members = [i]
        for j in by_lat[lo:hi]:
            if j == i or j in visited:
                continue
            other = points[j]
            if not box.contains(other.lat, other.lng):
                continue
            if haversine_km(seed.lat, seed.lng, other.lat, other.lng) <= radius_km:
                members.append(j)

        if len(members) < min_members:
            continue

        members.sort()
        visited.update(members)
        clusters.append(_build_cluster([points[m] for m in members], radius_km, now))

    return clusters


def _build_cluster(members: Sequence[ReportPoint], radius_km: float, now: datetime) -> Cluster:
    n = len(members)
    center_lat = sum(m.lat for m in members) / n
    center_lng = sum(m.lng for m in members) / n

    breakdown = Counter(m.category for m in members)
    primary_category = breakdown.most_common(1)[0][0]

    dates = sorted(as_utc(m.event_date) for m in members if m.event_date is not None)
    first_date = dates[0] if dates else None
    last_date = dates[-1] if dates else None
    is_active = last_date is not None and days_between(last_date, now) <= ACTIVE_WINDOW_DAYS

    has_verified = any((m.credibility or "").lower() == "verified" for m in members)
    spread = max(haversine_km(center_lat, center_lng, m.lat, m.lng) for m in members)

    return Cluster(
        report_ids=[m.id for m in members],
        center_lat=center_lat,
        center_lng=center_lng,
        radius_km=radius_km,
        report_count=n,
        category_breakdown=dict(breakdown),
        primary_category=primary_category,
        first_report_date=first_date,
        last_report_date=last_date,
        is_active=is_active,
        has_verified=has_verified,
        density=cluster_density(n, spread),
        intensity_score=calculate_intensity(n, days_active_since(first_date, now), has_verified),
    )
