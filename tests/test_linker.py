"""
test_linker.py — Auto-linking new reports into live Patterns.
"""

from datetime import timedelta

from conftest import NOW, report_doc
from paradocs.models.pattern import PatternReportLink
from paradocs.models.run import Checkpoint
from paradocs.services.linker import AUTO_LINK_RELEVANCE, link_pattern, link_pending_reports


class TestLinkPattern:

    async def test_links_matching_reports_once(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern("k1", status="active", first_report_date=NOW - timedelta(days=60))
        add_reports(
            report_doc("r1", category="ufos_aliens", event_date=NOW - timedelta(days=20)),
            report_doc("r2", category="ufos_aliens", event_date=NOW - timedelta(days=1)),
            report_doc("r3", category="cryptids", event_date=NOW - timedelta(days=1)),
            report_doc("r4", category="ufos_aliens", event_date=NOW - timedelta(days=90)),
            report_doc("r5", category="ufos_aliens", status="pending_review"),
        )
        pattern = await store.require_pattern(pid)

        added = await link_pattern(store, pattern, NOW, batch_size=1)
        assert added == 2

        links = fake_db["pattern_reports"].docs
        assert sorted(l["report_id"] for l in links) == ["r1", "r2"]
        assert all(l["relevance_score"] == AUTO_LINK_RELEVANCE for l in links)

        doc = fake_db["patterns"].docs[0]
        assert doc["report_count"] == 2
        assert doc["category_breakdown"]["ufos_aliens"] == 6
        assert doc["last_updated_at"] == NOW
        assert doc["metadata"]["auto_updated"] is True
        assert doc["status"] == "active"

    async def test_second_run_adds_nothing(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern("k1", status="active")
        add_reports(report_doc("r1"), report_doc("r2"))

        first = await link_pattern(store, await store.require_pattern(pid), NOW)
        before = dict(fake_db["patterns"].docs[0])
        second = await link_pattern(store, await store.require_pattern(pid), NOW + timedelta(hours=1))

        assert (first, second) == (2, 0)
        assert len(fake_db["pattern_reports"].docs) == 2
        assert fake_db["patterns"].docs[0]["last_updated_at"] == before["last_updated_at"]

    async def test_report_count_follows_links_not_stored_count(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern("k1", status="active", report_count=4)
        add_reports(*(report_doc(f"r{i}") for i in range(1, 5)))
        await store.insert_links(
            [PatternReportLink(pattern_id=pid, report_id=f"r{i}", relevance_score=0.8) for i in range(1, 4)],
            NOW - timedelta(days=1),
        )

        added = await link_pattern(store, await store.require_pattern(pid), NOW)

        assert added == 1
        assert fake_db["patterns"].docs[0]["report_count"] == 4

    async def test_drifted_count_repaired_without_new_links(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern("k1", status="active", report_count=9)
        add_reports(report_doc("r1"), report_doc("r2"))
        await link_pattern(store, await store.require_pattern(pid), NOW)
        fake_db["patterns"].docs[0]["report_count"] = 9
        stamp = fake_db["patterns"].docs[0]["last_updated_at"]

        added = await link_pattern(store, await store.require_pattern(pid), NOW + timedelta(hours=1))

        assert added == 0
        assert fake_db["patterns"].docs[0]["report_count"] == 2
        assert fake_db["patterns"].docs[0]["last_updated_at"] == stamp

    async def test_regional_pattern_links_only_its_location(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern(
            "region_ufos_aliens_Canada", status="active", pattern_type="regional_concentration",
            metadata={"location": "Canada"},
        )
        add_reports(
            report_doc("r1", country="Canada"),
            report_doc("r2", country="USA"),
            report_doc("r3", location_name="Canada"),
            report_doc("r4"),
        )

        added = await link_pattern(store, await store.require_pattern(pid), NOW)

        assert added == 2
        assert sorted(l["report_id"] for l in fake_db["pattern_reports"].docs) == ["r1", "r3"]


    async def test_pattern_without_categories_skipped(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern("k1", status="active", categories=[])
        add_reports(report_doc("r1"))
        assert await link_pattern(store, await store.require_pattern(pid), NOW) == 0
        assert fake_db["pattern_reports"].docs == []

    async def test_young_pattern_growth_is_emerging(self, store, fake_db, add_pattern, add_reports):
        pid = add_pattern("k1", status="declining", first_detected_at=NOW - timedelta(days=2))
        add_reports(report_doc("r1"))
        await link_pattern(store, await store.require_pattern(pid), NOW)
        assert fake_db["patterns"].docs[0]["status"] == "emerging"


class TestLinkPendingReports:

    async def test_sweeps_only_live_patterns(self, store, fake_db, add_pattern, add_reports):
        live = add_pattern("k1", status="emerging")
        add_pattern("k2", status="historical")
        add_pattern("k3", status="archived")
        add_reports(report_doc("r1"), report_doc("r2"), report_doc("r3"))

        checkpoint = Checkpoint(phase="link")
        assert await link_pending_reports(store, checkpoint, NOW) is True

        assert {l["pattern_id"] for l in fake_db["pattern_reports"].docs} == {live}
        assert checkpoint.summary.linked == 3
        assert checkpoint.grown_pattern_ids == [live]
        assert checkpoint.cursor == live

    async def test_store_failure_skips_pattern(self, store, fake_db, add_pattern, add_reports):
        add_pattern("k1", status="active")
        add_reports(report_doc("r1"))
        checkpoint = Checkpoint(phase="link")

        # Patterns page succeeds; every link lookup then fails through all retries
        original_find = fake_db["pattern_reports"].find

        def failing_find(*args, **kwargs):
            from pymongo.errors import AutoReconnect
            raise AutoReconnect("down")

        fake_db["pattern_reports"].find = failing_find
        try:
            assert await link_pending_reports(store, checkpoint, NOW) is True
        finally:
            fake_db["pattern_reports"].find = original_find

        assert checkpoint.summary.skipped == 1
        assert checkpoint.summary.linked == 0
        assert len(checkpoint.summary.errors) == 1
