"""
test_confidence.py — Uncertainty bounds, labels and display flags.
"""

import pytest

from paradocs.models.pattern import UncertaintyBounds
from paradocs.services.confidence import bound, confidence_label, format_uncertainty, quality_flags


class TestBound:

    @pytest.mark.parametrize("point", [0.0, 0.01, 0.25, 0.5, 0.73, 0.99, 1.0])
    @pytest.mark.parametrize("n", [1, 3, 10, 50, 500])
    def test_contains_point_and_stays_in_unit_interval(self, point, n):
        b = bound(point, n)
        assert 0 <= b.lower <= b.point <= b.upper <= 1

    def test_narrows_as_sample_grows(self):
        widths = [bound(0.6, n).upper - bound(0.6, n).lower for n in (1, 5, 20, 50, 200)]
        assert widths == sorted(widths, reverse=True)
        assert widths[0] > widths[-1]

    def test_out_of_range_point_clamped(self):
        assert bound(1.7, 10).point == 1.0
        assert bound(-0.2, 10).point == 0.0

    def test_zero_sample_treated_as_one(self):
        assert bound(0.5, 0) == bound(0.5, 1)

    def test_bounds_model_rejects_disorder(self):
        with pytest.raises(ValueError):
            UncertaintyBounds(point=0.5, lower=0.6, upper=0.9)


class TestLabels:

    @pytest.mark.parametrize("point,label", [
        (0.95, "high"), (0.8, "high"), (0.79, "moderate"), (0.6, "moderate"),
        (0.59, "low"), (0.4, "low"), (0.39, "very low"), (0.0, "very low"),
    ])
    def test_confidence_label(self, point, label):
        assert confidence_label(point) == label

    def test_format_percent(self):
        b = UncertaintyBounds(point=0.72, lower=0.61, upper=0.81)
        assert format_uncertainty(b) == "72% (61%-81%)"

    def test_format_percent_collapses_equal_bounds(self):
        b = UncertaintyBounds(point=1.0, lower=1.0, upper=1.0)
        assert format_uncertainty(b) == "100%"

    def test_format_decimal(self):
        b = UncertaintyBounds(point=0.72, lower=0.61, upper=0.81)
        assert format_uncertainty(b, "decimal") == "0.72 [0.61-0.81]"


class TestQualityFlags:

    def test_small_young_single_category(self):
        flags = quality_flags(4, 10, 1, True)
        assert flags == ["low_sample_size", "short_time_window", "single_category"]

    def test_no_location(self):
        assert "no_precise_location" in quality_flags(40, 100, 2, False)

    def test_well_established_and_multi_phenomenon(self):
        flags = quality_flags(150, 400, 3, True)
        assert "well_established" in flags
        assert "multi_phenomenon" in flags
        assert "low_sample_size" not in flags
