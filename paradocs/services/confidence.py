"""
confidence.py — Uncertainty intervals and labels for displayed scores.

Every probability-like number shown to a user (a Pattern's significance or
confidence) travels with an interval. The interval is a Wilson score
interval widened for small samples; it narrows as the supporting
report_count grows and always contains the point estimate.
"""

from __future__ import annotations

import math
from typing import Literal

from paradocs.models.pattern import UncertaintyBounds

Z_95 = 1.96
_FULL_SAMPLE = 50     # sample size at which the small-sample widening stops


def bound(point: float, sample_size: int = 1) -> UncertaintyBounds:
    """
    Approximate 95% interval around `point` given `sample_size` observations.

    The Wilson margin is multiplied by (2 - min(n / 50, 1)), so tiny samples
    get up to double the width. The result is clamped to [0, 1] and then
    stretched if needed so that lower ≤ point ≤ upper.
    """
    p = min(max(float(point), 0.0), 1.0)
    n = max(int(sample_size), 1)
    z2 = Z_95 ** 2

    denominator = 1 + z2 / n
    center = (p + z2 / (2 * n)) / denominator
    margin = Z_95 * math.sqrt(p * (1 - p) / n + z2 / (4 * n * n)) / denominator
    margin *= 2 - min(n / _FULL_SAMPLE, 1)

    lower = max(0.0, center - margin)
    upper = min(1.0, center + margin)
    lower = min(lower, p)
    upper = max(upper, p)

    return UncertaintyBounds(point=round(p, 4), lower=round(lower, 4), upper=round(upper, 4))


def confidence_label(point: float) -> str:
    if point >= 0.8:
        return "high"
    if point >= 0.6:
        return "moderate"
    if point >= 0.4:
        return "low"
    return "very low"


def format_uncertainty(bounds: UncertaintyBounds, fmt: Literal["percent", "decimal"] = "percent") -> str:
    """'72% (61%-81%)' or '0.72 [0.61-0.81]'."""
    if fmt == "percent":
        point = round(bounds.point * 100)
        lower = round(bounds.lower * 100)
        upper = round(bounds.upper * 100)
        if lower == upper:
            return f"{point}%"
        return f"{point}% ({lower}%-{upper}%)"
    return f"{bounds.point:.2f} [{bounds.lower:.2f}-{bounds.upper:.2f}]"


def quality_flags(
    report_count: int,
    time_span_days: float,
    category_count: int,
    has_location: bool,
) -> list[str]:
    """Caveats (and the occasional reassurance) to display next to a Pattern."""
    flags: list[str] = []
    if report_count < 10:
        flags.append("low_sample_size")
    if time_span_days < 30:
        flags.append("short_time_window")
    if category_count == 1:
        flags.append("single_category")
    if not has_location:
        flags.append("no_precise_location")
    if report_count > 100 and time_span_days > 365:
        flags.append("well_established")
    if category_count >= 3 and report_count >= 20:
        flags.append("multi_phenomenon")
    return flags
