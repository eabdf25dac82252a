"""
temporal.py — Volume-based detectors over recently ingested reports.

All three look only at approved reports created inside the baseline window
(SURGE_BASELINE_DAYS, 90 by default) and bucket by Sunday-start UTC weeks.

CATEGORY SURGES
───────────────
For each category with at least 10 reports, a week is a surge when

    count / (total / (baseline_days / 7)) ≥ 2   and   count ≥ 5

unless more than 80% of that week came from non-user sources with a ratio
above 5: that shape is a bulk import, not a real-world event.

REGIONAL CONCENTRATIONS
───────────────────────
Within a category, 10 or more reports naming the same country (or, without
one, the same location_name) form a `regional_concentration`.

WEEKLY ANOMALIES
────────────────
Across all categories, the per-week totals give a mean and a population
standard deviation. Weeks with |z| > 2 are anomalies (spikes or declines),
except spikes with z > 3 that are more than 80% non-user: bulk imports again.
"""

from __future__ import annotations

import math
import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Iterable

from paradocs.core.clock import as_utc, utcnow
from paradocs.models.pattern import RegionalCandidate, SurgeCandidate, WeeklyAnomaly
from paradocs.models.report import ReportPoint, category_name

MIN_REPORTS_PER_CATEGORY = 10
MIN_SURGE_COUNT = 5
SURGE_RATIO = 2.0
BULK_SOURCE_SHARE = 0.8
BULK_RATIO = 5.0

MIN_REGIONAL_REPORTS = 10

MIN_REPORTS_FOR_ANOMALY = 10
ANOMALY_Z = 2.0
BULK_Z = 3.0


def week_start(moment: datetime) -> datetime:
    """Midnight UTC on the Sunday starting moment's week."""
    moment = as_utc(moment)
    days_since_sunday = (moment.weekday() + 1) % 7
    day = moment - timedelta(days=days_since_sunday)
    return day.replace(hour=0, minute=0, second=0, microsecond=0)


def _is_user_report(report: ReportPoint) -> bool:
    return report.source_type in (None, "", "user")


def _in_window(reports: Iterable[ReportPoint], now: datetime, baseline_days: int) -> list[ReportPoint]:
    since = now - timedelta(days=baseline_days)
    rows = []
    for report in reports:
        created = as_utc(report.created_at)
        if created is None or created < since or created > now:
            continue
        rows.append(report)
    return rows


def _by_category(rows: list[ReportPoint]) -> dict[str, list[ReportPoint]]:
    grouped: dict[str, list[ReportPoint]] = defaultdict(list)
    for report in rows:
        grouped[report.category].append(report)
    return grouped


def _by_week(rows: list[ReportPoint]) -> dict[datetime, list[ReportPoint]]:
    weeks: dict[datetime, list[ReportPoint]] = defaultdict(list)
    for report in rows:
        weeks[week_start(report.created_at)].append(report)
    return weeks


# ── Category surges ───────────────────────────────────────────────────────────

def detect_category_surges(
    reports: Iterable[ReportPoint],
    now: datetime | None = None,
    baseline_days: int = 90,
) -> list[SurgeCandidate]:
    """
    Find surge weeks among `reports` (the caller's approved rows).

    Reports without created_at, or created before the baseline window,
    are ignored. Candidates come back ordered by category then week.
    """
    now = as_utc(now) or utcnow()
    baseline_weeks = baseline_days / 7
    by_category = _by_category(_in_window(reports, now, baseline_days))

    candidates: list[SurgeCandidate] = []
    for category in sorted(by_category):
        rows = by_category[category]
        if len(rows) < MIN_REPORTS_PER_CATEGORY:
            continue

        avg_per_week = len(rows) / baseline_weeks
        weeks = _by_week(rows)
        for start in sorted(weeks):
            members = weeks[start]
            count = len(members)
            ratio = count / avg_per_week
            users = sum(1 for r in members if _is_user_report(r))
            ingested = count - users

            bulk = ingested / count > BULK_SOURCE_SHARE and ratio > BULK_RATIO
            if ratio < SURGE_RATIO or count < MIN_SURGE_COUNT or bulk:
                continue

            candidates.append(_build_candidate(category, start, members, ratio, users, ingested, avg_per_week))

    return candidates


def _build_candidate(
    category: str,
    start: datetime,
    members: list[ReportPoint],
    ratio: float,
    users: int,
    ingested: int,
    avg_per_week: float,
) -> SurgeCandidate:
    week = start.date().isoformat()
    name = category_name(category)
    count = len(members)
    return SurgeCandidate(
        pattern_key=f"surge_{category}_{week}",
        category=category,
        week_start=start,
        week_end=start + timedelta(days=7),
        report_ids=sorted(r.id for r in members),
        report_count=count,
        ratio=ratio,
        user_reports=users,
        ingested_reports=ingested,
        title=f"{name} Surge: {round(ratio * 100)}% Above Average (Week of {week})",
        summary=(
            f"{count} {name} reports in the week of {week}, "
            f"{ratio:.1f}x the weekly average of {avg_per_week:.1f}."
        ),
    )


def surge_scores(candidate: SurgeCandidate) -> tuple[float, float]:
    """(significance, confidence) for a surge Pattern."""
    significance = min(candidate.report_count / 50, 1)
    confidence = min(candidate.ratio / 5, 1)
    return round(significance, 4), round(confidence, 4)


# ── Regional concentrations ───────────────────────────────────────────────────

def region_label(report: ReportPoint) -> str | None:
    """Country if known, else the free-text location name."""
    label = (report.country or report.location_name or "").strip()
    return label or None


_NON_WORD = re.compile(r"\W")


def regional_pattern_key(category: str, location: str) -> str:
    return f"region_{category}_{_NON_WORD.sub('_', location)}"


def detect_regional_concentrations(
    reports: Iterable[ReportPoint],
    now: datetime | None = None,
    baseline_days: int = 90,
) -> list[RegionalCandidate]:
    """
    Category/location groups of at least MIN_REGIONAL_REPORTS reports.

    Reports with no country or location_name are left out. Candidates come
    back ordered by pattern_key.
    """
    now = as_utc(now) or utcnow()
    by_category = _by_category(_in_window(reports, now, baseline_days))

    candidates: list[RegionalCandidate] = []
    for category, rows in by_category.items():
        if len(rows) < MIN_REPORTS_PER_CATEGORY:
            continue
        locations: dict[str, list[ReportPoint]] = defaultdict(list)
        for report in rows:
            label = region_label(report)
            if label:
                locations[label].append(report)

        for location, members in locations.items():
            if len(members) < MIN_REGIONAL_REPORTS:
                continue
            dates = [as_utc(r.event_date) for r in members if r.event_date is not None]
            name = category_name(category)
            count = len(members)
            candidates.append(RegionalCandidate(
                pattern_key=regional_pattern_key(category, location),
                category=category,
                location=location,
                report_ids=sorted(r.id for r in members),
                report_count=count,
                first_report_date=min(dates) if dates else None,
                last_report_date=max(dates) if dates else None,
                title=f"{name} Concentration: {count} Reports in {location}",
                summary=(
                    f"A notable concentration of {name} reports in {location}, "
                    f"with {count} documented incidents in recent months."
                ),
            ))

    return sorted(candidates, key=lambda c: c.pattern_key)


def regional_scores(report_count: int) -> tuple[float, float]:
    """(significance, confidence) for a regional Pattern."""
    return round(min(report_count / 30, 1), 4), round(min(report_count / 50, 1), 4)


# ── Weekly anomalies ──────────────────────────────────────────────────────────

def detect_weekly_anomalies(
    reports: Iterable[ReportPoint],
    now: datetime | None = None,
    baseline_days: int = 90,
) -> list[WeeklyAnomaly]:
    """
    Weeks whose total volume has |z| > 2 against the other weeks in the window.

    Only weeks with at least one report take part, so the mean is over
    active weeks. A flat history (zero deviation) has no anomalies.
    """
    now = as_utc(now) or utcnow()
    rows = _in_window(reports, now, baseline_days)
    if len(rows) < MIN_REPORTS_FOR_ANOMALY:
        return []

    weeks = _by_week(rows)
    counts = [len(members) for members in weeks.values()]
    mean = sum(counts) / len(counts)
    std_dev = math.sqrt(sum((c - mean) ** 2 for c in counts) / len(counts))
    if std_dev == 0:
        return []

    anomalies: list[WeeklyAnomaly] = []
    for start in sorted(weeks):
        members = weeks[start]
        count = len(members)
        z = (count - mean) / std_dev
        ingested = sum(1 for r in members if not _is_user_report(r))
        if abs(z) <= ANOMALY_Z:
            continue
        if ingested / count > BULK_SOURCE_SHARE and z > BULK_Z:
            continue
        anomalies.append(_build_anomaly(start, members, z, mean, std_dev))

    return anomalies


def _build_anomaly(
    start: datetime,
    members: list[ReportPoint],
    z: float,
    mean: float,
    std_dev: float,
) -> WeeklyAnomaly:
    week = start.date().isoformat()
    count = len(members)
    spike = z > 0
    if spike:
        title = f"Report Surge: {count} Reports (Week of {week})"
        summary = (
            f"Statistically significant increase in reports. This week saw {count} reports, "
            f"{z:.1f} standard deviations above the weekly average of {mean:.0f}."
        )
    else:
        title = f"Report Decline: Only {count} Reports (Week of {week})"
        summary = (
            f"Unusual decrease in report activity. Only {count} reports this week, "
            f"{abs(z):.1f} standard deviations below average."
        )
    return WeeklyAnomaly(
        pattern_key=f"temporal_{week}",
        week_start=start,
        week_end=start + timedelta(days=7),
        report_ids=sorted(r.id for r in members),
        report_count=count,
        categories=sorted({r.category for r in members}),
        category_breakdown=dict(Counter(r.category for r in members)),
        z_score=z,
        mean_count=mean,
        std_dev=std_dev,
        is_spike=spike,
        title=title,
        summary=summary,
    )


def anomaly_scores(anomaly: WeeklyAnomaly) -> tuple[float, float]:
    """(significance, confidence) for a weekly anomaly Pattern."""
    return round(min(anomaly.report_count / 100, 1), 4), round(min(abs(anomaly.z_score) / 5, 1), 4)
