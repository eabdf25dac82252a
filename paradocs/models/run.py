"""
run.py — Batch run bookkeeping.

RunSummary  JSON summary returned (and logged) per invocation
Checkpoint  resumable state the caller persists between invocations
GuardResult what the ingestion-artifact guard found and archived
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

Phase = Literal["geocode", "cluster", "surge", "link", "lifecycle", "guard", "done"]

PHASES: tuple[str, ...] = ("geocode", "cluster", "surge", "link", "lifecycle", "guard", "done")


class RunSummary(BaseModel):
    processed: int = 0     # reports + Patterns examined
    matched: int = 0       # candidates merged into an existing Pattern
    inserted: int = 0      # Patterns created
    linked: int = 0        # new Pattern ↔ Report link rows
    skipped: int = 0       # chunks skipped after retries + reports left unclustered
    archived: int = 0      # Patterns archived by the ingestion-artifact guard
    errors: list[str] = Field(default_factory=list)

    status: Literal["completed", "partial", "failed"] = "completed"
    phase: Phase = "done"
    complete: bool = True
    duration_ms: int = 0


class Checkpoint(BaseModel):
    """
    Where an interrupted run should pick up.

    `cursor` is the last Pattern id handled inside the current phase;
    `grown_pattern_ids` carries the Patterns that gained reports earlier in
    the same logical run so the lifecycle pass can apply the growth override.
    """

    job: str = "pattern_analysis"
    phase: Phase = "geocode"
    cursor: Optional[str] = None
    grown_pattern_ids: list[str] = Field(default_factory=list)
    summary: RunSummary = Field(default_factory=RunSummary)
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_fresh(self) -> bool:
        """No run in progress: the last one finished or none has started."""
        return self.started_at is None

    def mark_grown(self, pattern_id: str) -> None:
        if pattern_id not in self.grown_pattern_ids:
            self.grown_pattern_ids.append(pattern_id)


class GuardSample(BaseModel):
    id: str
    title: str
    report_count: int
    status: str


class GuardResult(BaseModel):
    """Outcome of one ingestion-artifact guard pass."""

    dry_run: bool
    patterns_found: int
    archived: int
    samples: list[GuardSample] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
