"""
store.py — PatternStore: every MongoDB call the pattern engine makes.

The engine never touches Motor collections directly. Each method here is a
single query or write primitive wrapped in with_retry, so a transient
connection failure is retried with backoff and then surfaces as a
StoreUnavailableError the batch sweeps know how to skip.

READS are keyset-paginated: `_id > cursor`, ascending, fixed page size.
WRITES are idempotent: Patterns upsert on their unique pattern_key,
links insert unordered and treat duplicate-key errors as already done.

ID CONVENTION
─────────────
Patterns use ObjectId `_id`s; reports may use ObjectIds or plain strings.
Outside the store every id is a `str`. `_key()` converts back for queries.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import BulkWriteError, DuplicateKeyError

from paradocs.core.config import settings
from paradocs.core.database import CHECKPOINTS, PATTERN_REPORTS, PATTERNS, REPORTS
from paradocs.core.errors import PatternNotFoundError
from paradocs.core.retry import with_retry
from paradocs.models.pattern import Pattern, PatternReportLink
from paradocs.models.report import Report, ReportPoint
from paradocs.models.run import Checkpoint

logger = logging.getLogger(__name__)

DUPLICATE_KEY = 11000

# Fields read for clustering / surge / linking
_POINT_PROJECTION = {
    "title": 1, "category": 1, "latitude": 1, "longitude": 1, "event_date": 1,
    "credibility": 1, "has_physical_evidence": 1, "has_photo_video": 1,
    "has_official_report": 1, "created_at": 1, "source_type": 1,
    "country": 1, "location_name": 1,
}


def _key(value: str | None) -> Any:
    """String id → the value stored in `_id`."""
    if value is not None and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _after(cursor: str | None) -> dict:
    return {"_id": {"$gt": _key(cursor)}} if cursor is not None else {}


def point_from_doc(doc: dict) -> ReportPoint:
    return ReportPoint(
        id=str(doc["_id"]),
        title=doc.get("title") or "",
        category=doc.get("category") or "unknown",
        lat=doc.get("latitude"),
        lng=doc.get("longitude"),
        event_date=doc.get("event_date"),
        credibility=doc.get("credibility"),
        has_physical_evidence=bool(doc.get("has_physical_evidence")),
        has_photo_video=bool(doc.get("has_photo_video")),
        has_official_report=bool(doc.get("has_official_report")),
        created_at=doc.get("created_at"),
        source_type=doc.get("source_type"),
        country=doc.get("country"),
        location_name=doc.get("location_name"),
    )


def pattern_from_doc(doc: dict) -> Pattern:
    data = {k: v for k, v in doc.items() if k != "_id"}
    data["id"] = str(doc["_id"])
    return Pattern.model_validate(data)


class PatternStore:
    """Thin async repository over the four engine collections."""

    def __init__(self, db: AsyncIOMotorDatabase, page_size: int | None = None):
        self.db = db
        self.page_size = page_size or settings.scan_page_size

    # ── Reports ───────────────────────────────────────────────────────────────

    async def fetch_unassigned_reports(self, cursor: str | None = None) -> list[ReportPoint]:
        """One page of approved, coordinate-bearing reports not yet in a hotspot."""
        query = {
            "status": "approved",
            "hotspot_id": None,
            "latitude": {"$ne": None},
            "longitude": {"$ne": None},
            **_after(cursor),
        }
        docs = await self._page(REPORTS, query, "fetch unassigned reports", _POINT_PROJECTION)
        return [point_from_doc(d) for d in docs]

    async def fetch_recent_reports(self, since: datetime, cursor: str | None = None) -> list[ReportPoint]:
        """One page of approved reports ingested since `since` (surge baseline)."""
        query = {"status": "approved", "created_at": {"$gte": since}, **_after(cursor)}
        docs = await self._page(REPORTS, query, "fetch recent reports", _POINT_PROJECTION)
        return [point_from_doc(d) for d in docs]

    async def fetch_link_candidates(
        self,
        categories: list[str],
        start: Optional[datetime],
        end: datetime,
        cursor: str | None = None,
        location: str | None = None,
    ) -> list[ReportPoint]:
        """One page of approved reports a Pattern could absorb."""
        query: dict[str, Any] = {"status": "approved", "category": {"$in": categories}, **_after(cursor)}
        if start is not None:
            query["event_date"] = {"$gte": start, "$lte": end}
        if location is not None:
            query["$or"] = [
                {"country": location},
                {"country": {"$in": [None, ""]}, "location_name": location},
            ]
        docs = await self._page(REPORTS, query, "fetch link candidates", _POINT_PROJECTION)
        return [point_from_doc(d) for d in docs]

    async def fetch_reports_to_geocode(self, limit: int) -> list[Report]:
        """Approved reports that name a place but carry no coordinates."""
        query = {
            "status": "approved",
            "latitude": None,
            "geocode_failed": {"$ne": True},
            "$or": [
                {"location_name": {"$nin": [None, ""]}},
                {"city": {"$nin": [None, ""]}},
            ],
        }

        async def _run():
            cursor = self.db[REPORTS].find(query).sort("_id", ASCENDING).limit(limit)
            return await cursor.to_list(length=limit)

        docs = await with_retry(_run, "fetch reports to geocode")
        reports = []
        for doc in docs:
            report = self._report_from_doc(doc)
            if report is not None:
                reports.append(report)
        return reports

    async def get_report(self, report_id: str) -> Optional[Report]:
        doc = await with_retry(
            lambda: self.db[REPORTS].find_one({"_id": _key(report_id)}),
            "get report",
        )
        return self._report_from_doc(doc) if doc else None

    async def set_report_coordinates(self, report_id: str, lat: float, lng: float) -> None:
        await with_retry(
            lambda: self.db[REPORTS].update_one(
                {"_id": _key(report_id)},
                {"$set": {"latitude": lat, "longitude": lng}},
            ),
            "set report coordinates",
        )

    async def mark_geocode_failed(self, report_id: str) -> None:
        """Keep an unresolvable location from being retried every run."""
        await with_retry(
            lambda: self.db[REPORTS].update_one(
                {"_id": _key(report_id)},
                {"$set": {"geocode_failed": True}},
            ),
            "mark geocode failed",
        )

    async def assign_hotspot(self, report_ids: Iterable[str], pattern_id: str) -> None:
        """Mark reports as clustered so they leave the unassigned pool."""
        keys = [_key(r) for r in report_ids]
        if not keys:
            return
        await with_retry(
            lambda: self.db[REPORTS].update_many(
                {"_id": {"$in": keys}},
                {"$set": {"hotspot_id": pattern_id}},
            ),
            "assign hotspot",
        )

    # ── Patterns ──────────────────────────────────────────────────────────────

    async def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        doc = await with_retry(
            lambda: self.db[PATTERNS].find_one({"_id": _key(pattern_id)}),
            "get pattern",
        )
        return pattern_from_doc(doc) if doc else None

    async def require_pattern(self, pattern_id: str) -> Pattern:
        pattern = await self.get_pattern(pattern_id)
        if pattern is None:
            raise PatternNotFoundError(pattern_id)
        return pattern

    async def find_patterns_near(
        self,
        lat: float,
        lng: float,
        tolerance_deg: float,
        pattern_type: str = "geographic_cluster",
    ) -> list[Pattern]:
        """Patterns of `pattern_type` whose centroid lies in the ±tolerance box."""
        query = {
            "pattern_type": pattern_type,
            "center_lat": {"$gte": lat - tolerance_deg, "$lte": lat + tolerance_deg},
            "center_lng": {"$gte": lng - tolerance_deg, "$lte": lng + tolerance_deg},
        }

        async def _run():
            return await self.db[PATTERNS].find(query).sort("_id", ASCENDING).to_list(length=None)

        docs = await with_retry(_run, "find patterns near")
        return [pattern_from_doc(d) for d in docs]

    async def upsert_pattern(self, pattern_key: str, on_insert: dict, on_update: dict | None = None) -> tuple[Pattern, bool]:
        """
        Create the Pattern for `pattern_key` unless it already exists.

        Returns (pattern, created). `on_insert` is only applied to a new
        row; `on_update` is applied either way. A concurrent insert of the
        same key loses the race on the unique index and is re-read.
        """
        update: dict[str, Any] = {"$setOnInsert": on_insert}
        if on_update:
            update["$set"] = on_update

        async def _run():
            try:
                result = await self.db[PATTERNS].update_one(
                    {"pattern_key": pattern_key}, update, upsert=True
                )
                created = result.upserted_id is not None
            except DuplicateKeyError:
                created = False
            doc = await self.db[PATTERNS].find_one({"pattern_key": pattern_key})
            return doc, created

        doc, created = await with_retry(_run, f"upsert pattern {pattern_key}")
        return pattern_from_doc(doc), created

    async def update_pattern(
        self,
        pattern_id: str,
        set_fields: dict,
        inc_fields: dict | None = None,
        only_if_status: Iterable[str] | None = None,
    ) -> bool:
        """Apply one atomic $set (+ optional $inc). Returns True if a row matched."""
        query: dict[str, Any] = {"_id": _key(pattern_id)}
        if only_if_status is not None:
            query["status"] = {"$in": list(only_if_status)}
        update: dict[str, Any] = {"$set": set_fields}
        if inc_fields:
            update["$inc"] = inc_fields
        result = await with_retry(
            lambda: self.db[PATTERNS].update_one(query, update),
            f"update pattern {pattern_id}",
        )
        return result.matched_count > 0

    async def fetch_patterns(
        self,
        cursor: str | None = None,
        status_in: Iterable[str] | None = None,
        status_nin: Iterable[str] | None = None,
    ) -> list[Pattern]:
        """One page of Patterns in id order, optionally filtered by status."""
        query: dict[str, Any] = dict(_after(cursor))
        status: dict[str, Any] = {}
        if status_in is not None:
            status["$in"] = list(status_in)
        if status_nin is not None:
            status["$nin"] = list(status_nin)
        if status:
            query["status"] = status
        docs = await self._page(PATTERNS, query, "fetch patterns")
        return [pattern_from_doc(d) for d in docs]

    async def fetch_recent_patterns(self, since: datetime, statuses: Iterable[str]) -> list[Pattern]:
        """Patterns created since `since` with one of `statuses` (guard candidates)."""
        query = {"created_at": {"$gte": since}, "status": {"$in": list(statuses)}}

        async def _run():
            return await (
                self.db[PATTERNS].find(query).sort("created_at", DESCENDING).to_list(length=None)
            )

        docs = await with_retry(_run, "fetch recent patterns")
        return [pattern_from_doc(d) for d in docs]

    # ── Links ─────────────────────────────────────────────────────────────────

    async def existing_link_ids(self, pattern_id: str) -> set[str]:
        async def _run():
            cursor = self.db[PATTERN_REPORTS].find({"pattern_id": pattern_id}, {"report_id": 1})
            return await cursor.to_list(length=None)

        docs = await with_retry(_run, f"existing links {pattern_id}")
        return {d["report_id"] for d in docs}

    async def count_links(self, pattern_id: str) -> int:
        return await with_retry(
            lambda: self.db[PATTERN_REPORTS].count_documents({"pattern_id": pattern_id}),
            f"count links {pattern_id}",
        )

    async def insert_links(self, links: list[PatternReportLink], now: datetime) -> list[str]:
        """
        Insert links, ignoring ones that already exist.

        Returns the report_ids whose link was actually created by this call.
        Any write error other than a duplicate key is re-raised.
        """
        if not links:
            return []
        docs = [{**link.model_dump(), "linked_at": now} for link in links]

        async def _run():
            try:
                await self.db[PATTERN_REPORTS].insert_many(docs, ordered=False)
            except BulkWriteError as exc:
                write_errors = exc.details.get("writeErrors", [])
                fatal = [e for e in write_errors if e.get("code") != DUPLICATE_KEY]
                if fatal:
                    raise
                failed = {e["index"] for e in write_errors}
                return [links[i].report_id for i in range(len(links)) if i not in failed]
            return [link.report_id for link in links]

        return await with_retry(_run, f"insert {len(links)} links")

    # ── Checkpoints ───────────────────────────────────────────────────────────

    async def load_checkpoint(self, job: str = "pattern_analysis") -> Optional[Checkpoint]:
        doc = await with_retry(
            lambda: self.db[CHECKPOINTS].find_one({"_id": job}),
            "load checkpoint",
        )
        if not doc:
            return None
        data = {k: v for k, v in doc.items() if k != "_id"}
        return Checkpoint.model_validate(data)

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        data = checkpoint.model_dump()
        await with_retry(
            lambda: self.db[CHECKPOINTS].update_one(
                {"_id": checkpoint.job}, {"$set": data}, upsert=True
            ),
            "save checkpoint",
        )

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _page(self, collection: str, query: dict, label: str, projection: dict | None = None) -> list[dict]:
        async def _run():
            cursor = self.db[collection].find(query, projection).sort("_id", ASCENDING).limit(self.page_size)
            return await cursor.to_list(length=self.page_size)

        return await with_retry(_run, label)

    @staticmethod
    def _report_from_doc(doc: dict) -> Optional[Report]:
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["id"] = str(doc["_id"])
        try:
            return Report.model_validate(data)
        except ValidationError as exc:
            logger.warning("Skipping malformed report %s: %s", data["id"], exc.error_count())
            return None
