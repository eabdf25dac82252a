"""
report.py — Pydantic schemas for phenomenon reports.

Report       — the stored report as the engine reads it
ReportPoint  — the projection the clustering engine works on
ScoringInput — what the Quality Scorer accepts (works for stored rows
               and for not-yet-ingested scraped reports alike)
"""

from datetime import datetime
from typing import Any, Literal, Optional, get_args

from pydantic import BaseModel, Field


# ── Enumerations ──────────────────────────────────────────────────────────────

ReportCategory = Literal[
    "ufos_aliens",
    "cryptids",
    "ghosts_hauntings",
    "psychic_phenomena",
    "consciousness_practices",
    "psychological_experiences",
    "biological_factors",
    "perception_sensory",
    "religion_mythology",
    "esoteric_practices",
    "multi_disciplinary",
    "combination",
]

REPORT_CATEGORIES: tuple[str, ...] = get_args(ReportCategory)

ReportStatus = Literal["approved", "pending_review", "rejected"]

# Display names used in generated Pattern titles
CATEGORY_NAMES: dict[str, str] = {
    "ufos_aliens": "UFOs & Aliens",
    "cryptids": "Cryptids",
    "ghosts_hauntings": "Ghosts & Hauntings",
    "psychic_phenomena": "Psychic Phenomena",
    "consciousness_practices": "Consciousness Practices",
    "psychological_experiences": "Psychological Experiences",
    "biological_factors": "Biological Factors",
    "perception_sensory": "Perception & Sensory",
    "religion_mythology": "Religion & Mythology",
    "esoteric_practices": "Esoteric Practices",
    "multi_disciplinary": "Multi-Disciplinary",
    "combination": "Combination",
}


def category_name(category: str) -> str:
    """Human label for a category, falling back to title-cased slug."""
    return CATEGORY_NAMES.get(category) or category.replace("_", " ").title()


# ── Report ────────────────────────────────────────────────────────────────────

class Report(BaseModel):
    """A stored report. Owned by ingestion/moderation; the engine only reads it."""

    id: str
    title: str
    summary: Optional[str] = None
    description: str = ""
    category: ReportCategory
    status: ReportStatus = "approved"

    # Location
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    location_name: Optional[str] = None
    country: Optional[str] = None
    state_province: Optional[str] = None
    city: Optional[str] = None

    # Time
    event_date: Optional[datetime] = None
    event_time: Optional[str] = None
    created_at: Optional[datetime] = None

    # Evidence + credibility
    has_physical_evidence: bool = False
    has_photo_video: bool = False
    has_official_report: bool = False
    evidence_summary: Optional[str] = None
    witness_count: int = 1
    credibility: Optional[str] = None   # "verified" | "high" | "medium" | "low" | …
    source_type: Optional[str] = None   # "user" | "nuforc" | "reddit" | …
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Set by the registry once the report has been clustered into a Pattern
    hotspot_id: Optional[str] = None


class ReportPoint(BaseModel):
    """The slice of a report the clustering, surge and linking passes read."""

    id: str
    title: str = ""
    category: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    event_date: Optional[datetime] = None
    credibility: Optional[str] = None
    has_physical_evidence: bool = False
    has_photo_video: bool = False
    has_official_report: bool = False
    created_at: Optional[datetime] = None
    source_type: Optional[str] = None
    country: Optional[str] = None
    location_name: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


# ── Quality scoring input ─────────────────────────────────────────────────────

class ScoringInput(BaseModel):
    """Payload for the Quality Scorer (POST /api/v1/quality/score)."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=100_000)
    summary: Optional[str] = None
    category: Optional[str] = None
    location_name: Optional[str] = None
    country: Optional[str] = None
    state_province: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    event_date: Optional[str] = None     # ISO date or free-form ("summer 1978")
    event_time: Optional[str] = None
    witness_count: Optional[int] = None
    has_physical_evidence: bool = False
    has_photo_video: bool = False
    has_official_report: bool = False
    evidence_summary: Optional[str] = None
    source_type: Optional[str] = None
    credibility: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
