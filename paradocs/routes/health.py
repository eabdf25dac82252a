"""
Health check endpoint.

Used by:
  - Docker HEALTHCHECK instruction
  - The scheduler, before firing the analyze-patterns cron trigger
  - Monitoring tools

Returns DB connectivity plus where the pattern-analysis run stands, so
callers can tell "API down", "DB unreachable" and "a run paused mid-way
and is waiting for the next trigger" apart.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from paradocs.core import database as db_module
from paradocs.core.config import settings
from paradocs.core.database import get_db
from paradocs.core.errors import StoreUnavailableError
from paradocs.models.run import Checkpoint, Phase
from paradocs.services.store import PatternStore

logger = logging.getLogger(__name__)
router = APIRouter()

API_VERSION = "0.1.0"


class PipelineStatus(BaseModel):
    phase: Phase
    cursor: Optional[str] = None
    resuming: bool              # a paused run will carry on from phase/cursor
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    grown_patterns: int = 0


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    database: str  # "connected" | "disconnected"
    environment: str
    pipeline: Optional[PipelineStatus] = None


def pipeline_status(checkpoint: Checkpoint) -> PipelineStatus:
    return PipelineStatus(
        phase=checkpoint.phase,
        cursor=checkpoint.cursor,
        resuming=not checkpoint.is_fresh,
        started_at=checkpoint.started_at,
        updated_at=checkpoint.updated_at,
        grown_patterns=len(checkpoint.grown_pattern_ids),
    )


async def _load_pipeline(db) -> Optional[PipelineStatus]:
    if db is None:
        return None
    try:
        checkpoint = await PatternStore(db).load_checkpoint()
    except StoreUnavailableError as exc:
        logger.warning("Checkpoint unavailable for health check: %s", exc)
        return None
    return pipeline_status(checkpoint) if checkpoint else None


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check(db=Depends(get_db)) -> HealthResponse:
    """
    Liveness, database connection and the saved pattern-analysis checkpoint.

    The API is considered healthy (HTTP 200) even when the database is
    disconnected; `pipeline` is then null.
    """
    db_status = "disconnected"
    try:
        # Access via module reference so tests can patch db_module.db_client
        if db_module.db_client.client is not None:
            await db_module.db_client.client.admin.command("ping")
            db_status = "connected"
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=db_status,
        environment=settings.environment,
        pipeline=await _load_pipeline(db),
    )
