"""
test_quality_routes.py — POST /api/v1/quality/score and
GET /api/v1/quality/reports/{id}.
"""

from conftest import report_doc


class TestScoreEndpoint:

    async def test_scores_payload(self, client):
        r = await client.post("/api/v1/quality/score", json={
            "title": "Green orb over the lake",
            "description": "I saw a glowing green orb hover over the lake at 10:30 pm.",
            "source_type": "nuforc",
            "event_date": "2025-08-14",
        })
        assert r.status_code == 200
        data = r.json()
        assert 0 <= data["total_score"] <= 100
        assert data["grade"] in ("A", "B", "C", "D", "F")
        assert data["recommended_status"] in ("approved", "pending_review", "rejected")
        assert set(data["dimensions"]) == {
            "evidence_strength", "witness_credibility", "description_detail",
            "location_specificity", "temporal_precision", "source_reliability",
            "corroboration_potential", "narrative_coherence", "content_originality",
            "data_completeness",
        }

    async def test_empty_title_rejected(self, client):
        r = await client.post("/api/v1/quality/score", json={"title": ""})
        assert r.status_code == 422


class TestStoredReport:

    async def test_scores_stored_report(self, db_client, add_reports):
        add_reports(report_doc("r1", 40.0, -74.0, city="Newark", source_type="mufon"))
        r = await db_client.get("/api/v1/quality/reports/r1")
        assert r.status_code == 200
        assert r.json()["dimensions"]["source_reliability"]["score"] == 8

    async def test_missing_report_is_404(self, db_client):
        r = await db_client.get("/api/v1/quality/reports/nope")
        assert r.status_code == 404

    async def test_no_db_returns_503(self, client):
        r = await client.get("/api/v1/quality/reports/r1")
        assert r.status_code == 503
