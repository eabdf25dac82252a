"""
quality.py — Output schemas of the Quality Scorer.

Advisory only: a QualityReport is recomputed on demand and never becomes
the source of truth for a report's credibility.
"""

from typing import Literal

from pydantic import BaseModel, Field

Grade = Literal["A", "B", "C", "D", "F"]
RecommendedStatus = Literal["approved", "pending_review", "rejected"]


class DimensionScore(BaseModel):
    score: float = Field(ge=0, le=10)   # 0–10 for this dimension
    weight: float                       # fixed per-dimension multiplier
    weighted: float                     # score × weight (1 decimal)
    explanation: str


class QualityDimensions(BaseModel):
    evidence_strength: DimensionScore
    witness_credibility: DimensionScore
    description_detail: DimensionScore
    location_specificity: DimensionScore
    temporal_precision: DimensionScore
    source_reliability: DimensionScore
    corroboration_potential: DimensionScore
    narrative_coherence: DimensionScore
    content_originality: DimensionScore
    data_completeness: DimensionScore


class QualityReport(BaseModel):
    """Composite 0–100 score, letter grade and moderation recommendation."""

    total_score: int = Field(ge=0, le=100)
    grade: Grade
    recommended_status: RecommendedStatus
    dimensions: QualityDimensions
    version: str
