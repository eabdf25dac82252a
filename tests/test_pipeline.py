"""
test_pipeline.py — End-to-end pattern runs against the FakeDB, including
budget exhaustion and checkpoint resume.
"""

from datetime import timedelta

from conftest import NOW, report_doc
from paradocs.models.run import Checkpoint
from paradocs.services.pipeline import run_pattern_analysis


def _seed_hotspot(add_reports):
    add_reports(
        report_doc("r1", 35.00, -106.00, event_date=NOW - timedelta(days=4)),
        report_doc("r2", 35.02, -106.01, event_date=NOW - timedelta(days=3)),
        report_doc("r3", 35.01, -105.98, category="cryptids", event_date=NOW - timedelta(days=2)),
        report_doc("r4", 48.00, 2.00),
    )


class TestFullRun:

    async def test_creates_hotspot_and_completes(self, store, fake_db, add_reports):
        _seed_hotspot(add_reports)
        summary, checkpoint = await run_pattern_analysis(store, None, now=NOW)

        assert summary.complete
        assert summary.status == "completed"
        assert summary.phase == "done"
        assert summary.inserted == 1
        assert summary.linked >= 3
        assert summary.skipped >= 1          # r4 had no neighbours
        assert checkpoint.phase == "geocode" and checkpoint.cursor is None

        patterns = [d for d in fake_db["patterns"].docs if d["pattern_type"] == "geographic_cluster"]
        assert len(patterns) == 1
        assert patterns[0]["status"] == "emerging"
        clustered = {d["_id"] for d in fake_db["reports"].docs if d.get("hotspot_id")}
        assert clustered == {"r1", "r2", "r3"}

    async def test_second_run_is_idempotent(self, store, fake_db, add_reports):
        _seed_hotspot(add_reports)
        await run_pattern_analysis(store, None, now=NOW)
        links_before = len(fake_db["pattern_reports"].docs)
        patterns_before = len(fake_db["patterns"].docs)

        summary, _ = await run_pattern_analysis(store, None, now=NOW + timedelta(hours=1))

        assert summary.inserted == 0
        assert summary.linked == 0
        assert len(fake_db["pattern_reports"].docs) == links_before
        assert len(fake_db["patterns"].docs) == patterns_before

    async def test_new_report_near_existing_hotspot_is_merged(self, store, fake_db, add_reports):
        _seed_hotspot(add_reports)
        await run_pattern_analysis(store, None, now=NOW)
        add_reports(
            report_doc("r5", 35.03, -106.02, event_date=NOW - timedelta(days=1)),
            report_doc("r6", 35.04, -106.00, event_date=NOW - timedelta(days=1)),
            report_doc("r7", 35.00, -106.03, event_date=NOW - timedelta(days=1)),
        )

        summary, _ = await run_pattern_analysis(store, None, now=NOW + timedelta(days=1))

        geo = [d for d in fake_db["patterns"].docs if d["pattern_type"] == "geographic_cluster"]
        assert len(geo) == 1
        assert summary.matched >= 1
        assert geo[0]["report_count"] >= 6

    async def test_regional_concentration_created(self, store, fake_db, add_reports):
        add_reports(*(report_doc(f"c{i:02d}", country="Canada") for i in range(12)))

        summary, _ = await run_pattern_analysis(store, None, now=NOW)

        regions = [d for d in fake_db["patterns"].docs if d["pattern_type"] == "regional_concentration"]
        assert summary.complete
        assert [d["pattern_key"] for d in regions] == ["region_ufos_aliens_Canada"]
        assert regions[0]["report_count"] == 12
        linked = {l["report_id"] for l in fake_db["pattern_reports"].docs if l["pattern_id"] == str(regions[0]["_id"])}
        assert len(linked) == 12

    async def test_empty_store_completes(self, store):
        summary, _ = await run_pattern_analysis(store, None, now=NOW)
        assert summary.complete and summary.status == "completed"
        assert summary.processed == 0


class TestBudget:

    async def test_zero_budget_pauses_and_resume_finishes(self, store, fake_db, add_reports):
        _seed_hotspot(add_reports)

        summary, checkpoint = await run_pattern_analysis(store, None, now=NOW, budget_seconds=0)
        assert not summary.complete
        assert summary.status == "partial"
        assert checkpoint.phase != "done"

        for _ in range(20):
            summary, checkpoint = await run_pattern_analysis(store, checkpoint, now=NOW)
            if summary.complete:
                break

        assert summary.complete
        assert summary.inserted == 1
        assert len([d for d in fake_db["patterns"].docs if d["pattern_type"] == "geographic_cluster"]) == 1

    async def test_resume_from_saved_checkpoint(self, store, add_reports):
        _seed_hotspot(add_reports)
        _, checkpoint = await run_pattern_analysis(store, None, now=NOW, budget_seconds=0)
        await store.save_checkpoint(checkpoint)

        loaded = await store.load_checkpoint()
        summary, fresh = await run_pattern_analysis(store, loaded, now=NOW)

        assert summary.complete
        assert fresh.phase == "geocode"

    async def test_finished_checkpoint_starts_new_run(self, store):
        done = Checkpoint(phase="done")
        done.summary.inserted = 99
        summary, _ = await run_pattern_analysis(store, done, now=NOW)
        assert summary.inserted == 0


class TestStoreOutage:

    async def test_page_failure_pauses_as_failed(self, store, fake_db, add_reports):
        _seed_hotspot(add_reports)
        fake_db["reports"].fail_times = 100

        summary, checkpoint = await run_pattern_analysis(store, None, now=NOW)

        assert summary.status == "failed"
        assert not summary.complete
        assert summary.errors
        assert checkpoint.phase == "cluster"

        fake_db["reports"].fail_times = 0
        summary, _ = await run_pattern_analysis(store, checkpoint, now=NOW)
        assert summary.complete
        assert summary.inserted == 1
