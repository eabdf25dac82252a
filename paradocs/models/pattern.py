"""
pattern.py — Pydantic models for clusters, Patterns and their links.

Cluster            transient: one spatial grouping found in a clustering pass
SurgeCandidate     transient: one category-week surge found by the temporal detector
RegionalCandidate  transient: one category concentrated in a single country or place
WeeklyAnomaly      transient: one week whose overall volume is a z-score outlier
Pattern            persisted, long-lived; lifecycle status lives here
PatternReportLink  many-to-many join, unique on (pattern_id, report_id)
UncertaintyBounds  interval attached to any displayed probability-like score

Mongo document shape for `patterns`
───────────────────────────────────
  {
    "_id": ObjectId,
    "pattern_key": "geographic_cluster:40.7:-74.0",   ← unique natural key
    "pattern_type": "geographic_cluster",
    "status": "emerging",
    "center_lat": 40.71, "center_lng": -74.0, "radius_km": 50,
    "categories": ["ufos_aliens"], "category_breakdown": {"ufos_aliens": 4},
    "report_count": 4, "intensity_score": 71.3, ...
    "metadata": {"density": 0.02, "archived_reason": ...},
    "first_detected_at": ISODate, "created_at": ISODate, "last_updated_at": ISODate
  }
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

PatternType = Literal[
    "geographic_cluster",
    "temporal_anomaly",
    "flap_wave",
    "regional_concentration",
    "seasonal_pattern",
]

PatternStatus = Literal["emerging", "active", "declining", "historical", "archived"]

# Statuses the linker and guard consider "live"
LINKABLE_STATUSES: tuple[str, ...] = ("emerging", "active", "declining")

ConfidenceLabel = Literal["high", "moderate", "low", "very low"]


class UncertaintyBounds(BaseModel):
    """Approximate 95% interval around a point estimate; lower ≤ point ≤ upper."""

    point: float = Field(ge=0, le=1)
    lower: float = Field(ge=0, le=1)
    upper: float = Field(ge=0, le=1)

    @model_validator(mode="after")
    def _ordered(self) -> "UncertaintyBounds":
        if not (self.lower <= self.point <= self.upper):
            raise ValueError(
                f"bounds out of order: lower={self.lower} point={self.point} upper={self.upper}"
            )
        return self


class Cluster(BaseModel):
    """A spatial grouping of reports discovered in one clustering pass."""

    report_ids: list[str]
    center_lat: float
    center_lng: float
    radius_km: float
    report_count: int
    category_breakdown: dict[str, int]
    primary_category: str
    first_report_date: Optional[datetime] = None
    last_report_date: Optional[datetime] = None
    is_active: bool
    has_verified: bool
    density: float              # reports per km² of the member spread
    intensity_score: float      # 0–100

    @property
    def categories(self) -> list[str]:
        return sorted(self.category_breakdown)


class SurgeCandidate(BaseModel):
    """A category-week whose report volume is well above the weekly average."""

    pattern_key: str
    category: str
    week_start: datetime
    week_end: datetime
    report_ids: list[str]
    report_count: int
    ratio: float                # week count / average weekly count
    user_reports: int
    ingested_reports: int
    title: str
    summary: str


class RegionalCandidate(BaseModel):
    """A category with at least ten recent reports naming the same country or place."""

    pattern_key: str
    category: str
    location: str
    report_ids: list[str]
    report_count: int
    first_report_date: Optional[datetime] = None
    last_report_date: Optional[datetime] = None
    title: str
    summary: str


class WeeklyAnomaly(BaseModel):
    """A week whose total report volume is more than two standard deviations off the mean."""

    pattern_key: str
    week_start: datetime
    week_end: datetime
    report_ids: list[str]
    report_count: int
    categories: list[str]
    category_breakdown: dict[str, int]
    z_score: float
    mean_count: float
    std_dev: float
    is_spike: bool
    title: str
    summary: str


class Pattern(BaseModel):
    """A persisted Pattern as exposed to collaborators."""

    id: str
    pattern_key: str
    pattern_type: PatternType
    status: PatternStatus
    significance_score: float = Field(ge=0, le=1)
    confidence_score: float = Field(ge=0, le=1)
    report_count: int = 0
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None
    radius_km: Optional[float] = None
    categories: list[str] = Field(default_factory=list)
    category_breakdown: dict[str, int] = Field(default_factory=dict)
    intensity_score: Optional[float] = None
    is_active: bool = True
    first_report_date: Optional[datetime] = None
    last_report_date: Optional[datetime] = None
    title: str = ""
    ai_summary: Optional[str] = None
    detection_method: str = "clustering"
    metadata: dict[str, Any] = Field(default_factory=dict)
    first_detected_at: datetime
    created_at: datetime
    last_updated_at: datetime


class PatternReportLink(BaseModel):
    pattern_id: str
    report_id: str
    relevance_score: float = Field(ge=0, le=1)
    distance_km: Optional[float] = None


# ── API response shapes ───────────────────────────────────────────────────────

class PatternOut(Pattern):
    """Pattern plus the display-only uncertainty attachments."""

    significance: UncertaintyBounds
    confidence: UncertaintyBounds
    confidence_label: ConfidenceLabel
    confidence_display: str     # "72% (61%-81%)"
    quality_flags: list[str] = Field(default_factory=list)


class PatternListResponse(BaseModel):
    patterns: list[PatternOut]
    total: int
    limit: int
    offset: int
    has_more: bool


class PatternInsight(BaseModel):
    pattern_id: str
    narrative: str
    cached: bool


class HotspotListResponse(BaseModel):
    hotspots: list[PatternOut]
    total: int
