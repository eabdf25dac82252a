"""
hotspots.py — Geographic hotspot routes for the map view.

Routes:
  GET  /api/v1/hotspots   — geographic_cluster Patterns, filterable by
                            category / min intensity / active-only and
                            sorted by intensity, report count or recency

Archived Patterns never appear here.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from paradocs.core.database import PATTERNS, get_db
from paradocs.models.pattern import HotspotListResponse
from paradocs.routes.patterns import docs_to_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/hotspots", tags=["hotspots"])

_SORT_FIELDS = {
    "intensity": "intensity_score",
    "reports": "report_count",
    "recent": "last_report_date",
}


@router.get("", response_model=HotspotListResponse)
async def list_hotspots(
    category: Optional[str] = Query(default=None),
    min_intensity: float = Query(default=0, ge=0, le=100),
    active_only: bool = Query(default=False),
    sort_by: Literal["intensity", "reports", "recent"] = Query(default="intensity"),
    limit: int = Query(default=100, ge=1, le=500),
    db=Depends(get_db),
):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    query: dict = {"pattern_type": "geographic_cluster", "status": {"$ne": "archived"}}
    if category:
        query["categories"] = category
    if min_intensity > 0:
        query["intensity_score"] = {"$gte": min_intensity}
    if active_only:
        query["is_active"] = True

    total = await db[PATTERNS].count_documents(query)
    cursor = db[PATTERNS].find(query).sort([(_SORT_FIELDS[sort_by], -1), ("_id", 1)]).limit(limit)
    docs = await cursor.to_list(length=limit)

    return HotspotListResponse(hotspots=docs_to_out(docs), total=total)
