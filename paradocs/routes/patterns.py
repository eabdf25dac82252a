"""
patterns.py — Read-side Pattern routes.

Routes:
  GET  /api/v1/patterns                 — list Patterns (filter, sort, paginate)
  GET  /api/v1/patterns/{id}            — one Pattern with uncertainty + flags
  GET  /api/v1/patterns/{id}/insight    — narrative prose (cached as ai_summary)

Every score leaves this module wrapped in UncertaintyBounds: significance
and confidence are estimates, and the interval width tells the reader how
much weight `report_count` lets them carry.

TESTING
─────────
  pytest tests/test_patterns_routes.py -v
  curl "http://localhost:8000/api/v1/patterns?status=emerging&sort=recent"
"""

import logging
from typing import Literal, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, Query

from paradocs.ai.gemini_client import gemini_client
from paradocs.core.clock import days_between
from paradocs.core.database import PATTERNS, get_db
from paradocs.models.pattern import Pattern, PatternInsight, PatternListResponse, PatternOut
from paradocs.services.confidence import bound, confidence_label, format_uncertainty, quality_flags
from paradocs.services.store import PatternStore, pattern_from_doc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/patterns", tags=["patterns"])

_SORT_FIELDS = {
    "significance": "significance_score",
    "confidence": "confidence_score",
    "reports": "report_count",
    "recent": "last_updated_at",
}


# ── Helpers ───────────────────────────────────────────────────────────────────

def to_pattern_out(pattern: Pattern) -> PatternOut:
    """Attach bounds, label and display flags to a stored Pattern."""
    span_days = 0.0
    if pattern.first_report_date and pattern.last_report_date:
        span_days = max(0.0, days_between(pattern.first_report_date, pattern.last_report_date))

    confidence = bound(pattern.confidence_score, pattern.report_count)
    return PatternOut(
        **pattern.model_dump(),
        significance=bound(pattern.significance_score, pattern.report_count),
        confidence=confidence,
        confidence_label=confidence_label(pattern.confidence_score),
        confidence_display=format_uncertainty(confidence),
        quality_flags=quality_flags(
            pattern.report_count,
            span_days,
            len(pattern.categories),
            pattern.center_lat is not None and pattern.center_lng is not None,
        ),
    )


def docs_to_out(docs: list[dict]) -> list[PatternOut]:
    items = []
    for doc in docs:
        try:
            items.append(to_pattern_out(pattern_from_doc(doc)))
        except Exception as exc:
            logger.warning("Skipping malformed pattern doc %s: %s", doc.get("_id"), exc)
    return items


def _validate_oid(pattern_id: str) -> str:
    try:
        ObjectId(pattern_id)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=422, detail="Invalid pattern ID format")
    return pattern_id


# ── Routes ────────────────────────────────────────────────────────────────────

@router.get("", response_model=PatternListResponse)
async def list_patterns(
    status: Optional[str] = Query(default=None, description="Comma-separated statuses; archived hidden by default"),
    pattern_type: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    sort: Literal["significance", "confidence", "reports", "recent"] = Query(default="significance"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db=Depends(get_db),
):
    """Paginated Pattern list, most significant first by default."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    query: dict = {}
    if status:
        query["status"] = {"$in": [s.strip() for s in status.split(",") if s.strip()]}
    else:
        query["status"] = {"$ne": "archived"}
    if pattern_type:
        query["pattern_type"] = pattern_type
    if category:
        query["categories"] = category

    total = await db[PATTERNS].count_documents(query)
    cursor = (
        db[PATTERNS].find(query)
        .sort([(_SORT_FIELDS[sort], -1), ("_id", 1)])
        .skip(offset)
        .limit(limit)
    )
    docs = await cursor.to_list(length=limit)

    return PatternListResponse(
        patterns=docs_to_out(docs),
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(docs) < total,
    )


@router.get("/{pattern_id}", response_model=PatternOut)
async def get_pattern(pattern_id: str, db=Depends(get_db)):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    store = PatternStore(db)
    pattern = await store.require_pattern(_validate_oid(pattern_id))
    return to_pattern_out(pattern)


@router.get("/{pattern_id}/insight", response_model=PatternInsight)
async def get_pattern_insight(
    pattern_id: str,
    refresh: bool = Query(default=False, description="Regenerate even if a narrative is cached"),
    db=Depends(get_db),
):
    """
    Narrative for a Pattern from the text-generation collaborator.

    The prose is cached on the Pattern as ai_summary; pass refresh=true to
    regenerate it.
    """
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    store = PatternStore(db)
    pattern = await store.require_pattern(_validate_oid(pattern_id))

    if pattern.ai_summary and not refresh:
        return PatternInsight(pattern_id=pattern.id, narrative=pattern.ai_summary, cached=True)

    try:
        narrative = await gemini_client.generate_pattern_narrative(pattern)
    except Exception as exc:
        logger.error("Narrative generation failed for pattern %s: %s", pattern.id, exc)
        raise HTTPException(status_code=502, detail="Narrative generation failed")

    await store.update_pattern(pattern.id, {"ai_summary": narrative})
    return PatternInsight(pattern_id=pattern.id, narrative=narrative, cached=False)
