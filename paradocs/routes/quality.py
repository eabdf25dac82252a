"""
quality.py — Quality Scorer routes.

Routes:
  POST /api/v1/quality/score                — score an arbitrary report payload
  GET  /api/v1/quality/reports/{report_id}  — score a stored report

Both are advisory: nothing is written back to the report.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from paradocs.core.database import get_db
from paradocs.core.rate_limit import limiter
from paradocs.models.quality import QualityReport
from paradocs.models.report import ScoringInput
from paradocs.services.quality_scorer import from_report, score_report
from paradocs.services.store import PatternStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/quality", tags=["quality"])


@router.post("/score", response_model=QualityReport)
@limiter.limit("60/minute")
async def score(request: Request, payload: ScoringInput):
    """Run the ten-dimension scorer on a payload (ingestion preview, re-scoring jobs)."""
    report = score_report(payload)
    logger.debug("Scored %r: %d (%s)", payload.title[:60], report.total_score, report.grade)
    return report


@router.get("/reports/{report_id}", response_model=QualityReport)
async def score_stored_report(report_id: str, db=Depends(get_db)):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    report = await PatternStore(db).get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return score_report(from_report(report))
