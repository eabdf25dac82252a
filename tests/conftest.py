"""
pytest configuration and shared fixtures for the Paradocs pattern engine.

Key concern: tests must not require a live MongoDB, Gemini key or Mapbox token.
We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. An in-memory FakeDB that understands the slice of the Motor API the
     PatternStore uses (filters, dotted $set/$inc, upserts, unique indexes,
     unordered insert_many with BulkWriteError).
  3. Ensuring AI_MOCK_MODE=true and zero retry delay via env vars.
"""

import copy
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from pymongo.errors import AutoReconnect, BulkWriteError, DuplicateKeyError

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_RETRY_BASE_DELAY", "0")
os.environ.setdefault("MAPBOX_ACCESS_TOKEN", "")
os.environ.setdefault("CRON_SECRET", "")

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

_MISSING = object()


# ── In-memory Mongo ───────────────────────────────────────────────────────────

def _get(doc, path):
    current = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set(doc, path, value):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = copy.deepcopy(value)


def _eq(value, expected):
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _compare(value, arg, op):
    if value is _MISSING or value is None:
        return False
    try:
        return op(value, arg)
    except TypeError:
        return False


_OPERATORS = {
    "$in": lambda v, a: any(_eq(v, x) for x in a),
    "$nin": lambda v, a: not any(_eq(v, x) for x in a),
    "$ne": lambda v, a: not _eq(v, a),
    "$gt": lambda v, a: _compare(v, a, lambda x, y: x > y),
    "$gte": lambda v, a: _compare(v, a, lambda x, y: x >= y),
    "$lt": lambda v, a: _compare(v, a, lambda x, y: x < y),
    "$lte": lambda v, a: _compare(v, a, lambda x, y: x <= y),
    "$exists": lambda v, a: (v is not _MISSING) == bool(a),
}


def matches(doc, query):
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
            continue
        value = _get(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not all(_OPERATORS[op](value, arg) for op, arg in cond.items()):
                return False
        elif not _eq(value, cond):
            return False
    return True


def _sort_key(value):
    # Mongo orders null / missing before everything else
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list, direction=None):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(_get(d, field)), reverse=order == -1)
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _result(self):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        return docs

    async def to_list(self, length=None):
        docs = self._result()
        return docs[:length] if length else docs

    def __aiter__(self):
        self._iter = iter(self._result())
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """
    One collection. `unique` lists field tuples with a unique index.

    Set `fail_times` to make the next N calls raise AutoReconnect.
    """

    def __init__(self, unique=()):
        self.docs: list[dict] = []
        self.unique = list(unique)
        self.fail_times = 0
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise AutoReconnect("connection reset by fake")

    def _violates_unique(self, doc, ignore=None):
        for other in self.docs:
            if other is ignore:
                continue
            if other["_id"] == doc["_id"]:
                return True
            for fields in self.unique:
                values = [_get(doc, f) for f in fields]
                if _MISSING in values:
                    continue
                if values == [_get(other, f) for f in fields]:
                    return True
        return False

    def _insert(self, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        if self._violates_unique(doc):
            raise DuplicateKeyError("E11000 duplicate key error", code=11000)
        self.docs.append(doc)
        return doc["_id"]

    @staticmethod
    def _project(doc, projection):
        doc = copy.deepcopy(doc)
        if not projection:
            return doc
        return {k: v for k, v in doc.items() if k == "_id" or projection.get(k)}

    # ── reads ────────────────────────────────────────────────────────────────

    def find(self, query=None, projection=None):
        self._maybe_fail()
        return FakeCursor([self._project(d, projection) for d in self.docs if matches(d, query)])

    async def find_one(self, query=None, projection=None):
        self._maybe_fail()
        for doc in self.docs:
            if matches(doc, query):
                return self._project(doc, projection)
        return None

    async def count_documents(self, query):
        self._maybe_fail()
        return sum(1 for d in self.docs if matches(d, query))

    # ── writes ───────────────────────────────────────────────────────────────

    async def insert_one(self, doc):
        self._maybe_fail()
        return SimpleNamespace(inserted_id=self._insert(doc))

    async def insert_many(self, docs, ordered=True):
        self._maybe_fail()
        errors = []
        inserted = []
        for index, doc in enumerate(docs):
            try:
                inserted.append(self._insert(doc))
            except DuplicateKeyError:
                errors.append({"index": index, "code": 11000, "errmsg": "E11000 duplicate key error"})
                if ordered:
                    break
        if errors:
            raise BulkWriteError({"writeErrors": errors, "nInserted": len(inserted)})
        return SimpleNamespace(inserted_ids=inserted)

    @staticmethod
    def _apply(doc, update, inserting=False):
        for path, value in update.get("$set", {}).items():
            _set(doc, path, value)
        for path, value in update.get("$inc", {}).items():
            current = _get(doc, path)
            _set(doc, path, (0 if current is _MISSING else current) + value)
        if inserting:
            for path, value in update.get("$setOnInsert", {}).items():
                _set(doc, path, value)

    async def update_one(self, query, update, upsert=False):
        self._maybe_fail()
        for doc in self.docs:
            if matches(doc, query):
                self._apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        doc = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        self._apply(doc, update, inserting=True)
        upserted_id = self._insert(doc)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=upserted_id)

    async def update_many(self, query, update):
        self._maybe_fail()
        hits = [d for d in self.docs if matches(d, query)]
        for doc in hits:
            self._apply(doc, update)
        return SimpleNamespace(matched_count=len(hits), modified_count=len(hits))

    async def create_index(self, keys, unique=False, **kwargs):
        if unique:
            self.unique.append(tuple(field for field, _ in keys))
        return "_".join(field for field, _ in keys)


class FakeDB:
    """Collections are created on first access and persist for the test."""

    def __init__(self):
        self.collections = {
            "patterns": FakeCollection(unique=[("pattern_key",)]),
            "pattern_reports": FakeCollection(unique=[("pattern_id", "report_id")]),
        }

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection()
        return self.collections[name]


# ── Document builders ─────────────────────────────────────────────────────────

def report_doc(
    report_id,
    lat=None,
    lng=None,
    category="ufos_aliens",
    status="approved",
    event_date=None,
    created_at=None,
    **extra,
):
    doc = {
        "_id": report_id,
        "title": f"Report {report_id}",
        "description": "Bright light over the field.",
        "category": category,
        "status": status,
        "latitude": lat,
        "longitude": lng,
        "event_date": event_date if event_date is not None else NOW - timedelta(days=10),
        "created_at": created_at if created_at is not None else NOW - timedelta(days=5),
        "source_type": "user",
    }
    doc.update(extra)
    return doc


def pattern_doc(pattern_key="geographic_cluster:40.7:-74.0", **fields):
    doc = {
        "_id": ObjectId(),
        "pattern_key": pattern_key,
        "pattern_type": "geographic_cluster",
        "status": "active",
        "significance_score": 0.3,
        "confidence_score": 0.5,
        "report_count": 4,
        "center_lat": 40.7,
        "center_lng": -74.0,
        "radius_km": 50.0,
        "categories": ["ufos_aliens"],
        "category_breakdown": {"ufos_aliens": 4},
        "intensity_score": 55.0,
        "is_active": True,
        "first_report_date": NOW - timedelta(days=60),
        "last_report_date": NOW - timedelta(days=10),
        "title": "UFOs & Aliens Hotspot: 4 Reports near 40.70, -74.00",
        "ai_summary": None,
        "detection_method": "clustering",
        "metadata": {"density": 0.01},
        "first_detected_at": NOW - timedelta(days=60),
        "created_at": NOW - timedelta(days=60),
        "last_updated_at": NOW - timedelta(days=3),
    }
    doc.update(fields)
    return doc


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo / close_mongo_connection → no-op AsyncMocks
    - db_client.client / db_client.db → None (health reports "disconnected")
    """
    with (
        patch("paradocs.main.connect_to_mongo", new_callable=AsyncMock),
        patch("paradocs.main.close_mongo_connection", new_callable=AsyncMock),
    ):
        import paradocs.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def fake_db():
    return FakeDB()


@pytest.fixture()
def store(fake_db):
    from paradocs.services.store import PatternStore

    return PatternStore(fake_db, page_size=2)


@pytest.fixture()
def add_reports(fake_db):
    """Insert report docs built with report_doc(); returns the docs."""

    def _add(*docs):
        fake_db["reports"].docs.extend(copy.deepcopy(list(docs)))
        return list(docs)

    return _add


@pytest.fixture()
def add_pattern(fake_db):
    """Insert a pattern doc built with pattern_doc(**fields); returns its id string."""

    def _add(pattern_key="geographic_cluster:40.7:-74.0", **fields):
        doc = pattern_doc(pattern_key, **fields)
        fake_db["patterns"].docs.append(doc)
        return str(doc["_id"])

    return _add


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001  mock_db must run first
    """HTTPX async test client with no database (db dependency returns None)."""
    from paradocs.core.rate_limit import limiter
    from paradocs.main import app

    limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def db_client(fake_db):
    """HTTPX async test client wired to the FakeDB through get_db."""
    from paradocs.core.database import get_db
    from paradocs.core.rate_limit import limiter
    from paradocs.main import app

    # Fresh in-memory counters so earlier requests don't bleed into this test
    limiter.reset()

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
