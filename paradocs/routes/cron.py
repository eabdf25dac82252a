"""
cron.py — Scheduler-facing batch triggers.

Routes:
  POST /api/v1/cron/analyze-patterns                — run / resume the pipeline
  POST /api/v1/cron/cleanup-ingestion-patterns      — artifact guard only

The scheduler authenticates with the shared CRON_SECRET, sent either as
`X-Cron-Secret: <secret>` or `Authorization: Bearer <secret>`. An empty
CRON_SECRET accepts every caller (local development only).

A run that hits its time budget saves its checkpoint and answers with
`complete: false`; the next trigger resumes it.

TESTING
─────────
  pytest tests/test_cron_routes.py -v
  curl -X POST -H "X-Cron-Secret: $CRON_SECRET" http://localhost:8000/api/v1/cron/analyze-patterns
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from paradocs.ai.geocoder import geocoder
from paradocs.core.clock import utcnow
from paradocs.core.config import settings
from paradocs.core.database import get_db
from paradocs.core.rate_limit import limiter
from paradocs.models.run import GuardResult, RunSummary
from paradocs.services.artifact_guard import archive_ingestion_artifacts
from paradocs.services.pipeline import run_pattern_analysis
from paradocs.services.store import PatternStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cron", tags=["cron"])


def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """FastAPI dependency — reject callers without the shared secret."""
    expected = settings.cron_secret
    if not expected:
        return

    supplied = x_cron_secret
    if supplied is None and authorization and authorization.lower().startswith("bearer "):
        supplied = authorization[7:].strip()

    if not supplied or not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning("Rejected cron call with missing or invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/analyze-patterns", response_model=RunSummary, dependencies=[Depends(verify_cron_secret)])
@limiter.limit("6/minute")
async def analyze_patterns(
    request: Request,
    budget_seconds: Optional[float] = Query(default=None, gt=0, le=900),
    db=Depends(get_db),
):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    store = PatternStore(db)
    checkpoint = await store.load_checkpoint()
    summary, checkpoint = await run_pattern_analysis(
        store,
        checkpoint,
        now=utcnow(),
        budget_seconds=budget_seconds,
        geocoder=geocoder,
    )
    await store.save_checkpoint(checkpoint)
    return summary


@router.post(
    "/cleanup-ingestion-patterns",
    response_model=GuardResult,
    dependencies=[Depends(verify_cron_secret)],
)
async def cleanup_ingestion_patterns(
    dry_run: bool = Query(default=False),
    db=Depends(get_db),
):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    return await archive_ingestion_artifacts(PatternStore(db), utcnow(), dry_run=dry_run)
