"""
Unit tests for the AI collaborators (GeminiClient, Geocoder).

All tests run offline: Gemini in mock mode, Mapbox behind an
httpx.MockTransport. These test the adapter logic and graceful
degradation, not the providers' output.
"""

import httpx
import pytest

from conftest import pattern_doc, report_doc
from paradocs.ai.gemini_client import GeminiClient, build_pattern_prompt
from paradocs.ai.geocoder import Geocoder, build_location_query, geocode_pending_reports, normalize_query
from paradocs.core.errors import GeocodingUnavailableError
from paradocs.services.store import pattern_from_doc

# ─── GeminiClient ─────────────────────────────────────────────────────────────


class TestGeminiClientMockMode:

    def setup_method(self):
        import paradocs.core.config as cfg

        self._original = cfg.settings.ai_mock_mode
        cfg.settings.ai_mock_mode = True
        self.client = GeminiClient()

    def teardown_method(self):
        import paradocs.core.config as cfg

        cfg.settings.ai_mock_mode = self._original

    async def test_generate_unknown_key_returns_default(self):
        result = await self.client.generate("any prompt", response_key="nonexistent_key")
        assert "MOCK" in result

    async def test_pattern_narrative(self):
        result = await self.client.generate_pattern_narrative(pattern_from_doc(pattern_doc()))
        assert result.startswith("[MOCK]")


class TestGeminiFallback:

    def test_missing_key_falls_back_to_mock(self, monkeypatch):
        import paradocs.core.config as cfg

        monkeypatch.setattr(cfg.settings, "ai_mock_mode", False)
        monkeypatch.setattr(cfg.settings, "gemini_api_key", "")
        assert GeminiClient().mock_mode is True


class TestPatternPrompt:

    def test_includes_key_figures(self):
        prompt = build_pattern_prompt(pattern_from_doc(pattern_doc(report_count=12)))
        assert "geographic cluster pattern" in prompt
        assert "- Report Count: 12" in prompt
        assert "UFOs & Aliens" in prompt
        assert "40.70°, -74.00°" in prompt


# ─── Geocoder ─────────────────────────────────────────────────────────────────

def _mapbox(features, calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"features": features})

    return httpx.MockTransport(handler)


ROSWELL = {"center": [-104.52, 33.39], "place_name": "Roswell, New Mexico, United States", "relevance": 0.97}


class TestGeocoderQueries:

    def test_normalize_query(self):
        assert normalize_query("  Roswell,   NM ") == "roswell, nm"

    def test_complete_location_name_used_as_is(self):
        assert build_location_query("X", "Y", "Z", "Highway 285, Roswell") == "Highway 285, Roswell"

    def test_parts_assembled(self):
        assert build_location_query("Roswell", "New Mexico", "USA", "Roswell") == "Roswell, New Mexico, USA"

    def test_bare_location_name_fallback(self):
        assert build_location_query(location_name="Roswell") == "Roswell"


class TestGeocoder:

    async def test_disabled_without_token(self):
        geocoder = Geocoder(access_token="")
        assert not geocoder.enabled
        assert await geocoder.geocode("Roswell, NM") is None

    async def test_result_parsed_and_cached(self):
        calls = []
        geocoder = Geocoder(access_token="tok", min_interval=0, transport=_mapbox([ROSWELL], calls))

        first = await geocoder.geocode("Roswell, NM")
        second = await geocoder.geocode("  roswell,   nm")

        assert first.latitude == pytest.approx(33.39)
        assert first.longitude == pytest.approx(-104.52)
        assert second == first
        assert len(calls) == 1
        assert geocoder.requests_made == 1
        assert calls[0].url.params["access_token"] == "tok"

    async def test_miss_is_cached(self):
        calls = []
        geocoder = Geocoder(access_token="tok", min_interval=0, transport=_mapbox([], calls))
        assert await geocoder.geocode("Nowhere Special") is None
        assert await geocoder.geocode("nowhere special") is None
        assert len(calls) == 1

    async def test_http_error_raises_and_is_not_cached(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        geocoder = Geocoder(access_token="tok", min_interval=0, transport=transport)
        with pytest.raises(GeocodingUnavailableError):
            await geocoder.geocode("Roswell, NM")
        with pytest.raises(GeocodingUnavailableError):
            await geocoder.geocode("Roswell, NM")
        assert geocoder.requests_made == 2

    async def test_unavailable_then_recovers(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"features": [ROSWELL]})

        geocoder = Geocoder(access_token="tok", min_interval=0, transport=httpx.MockTransport(handler))

        with pytest.raises(GeocodingUnavailableError):
            await geocoder.geocode("Roswell, NM")
        result = await geocoder.geocode("Roswell, NM")

        assert result is not None
        assert result.latitude == pytest.approx(33.39)
        assert len(calls) == 2

    async def test_timeout_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        geocoder = Geocoder(access_token="tok", min_interval=0, transport=httpx.MockTransport(handler))
        with pytest.raises(GeocodingUnavailableError):
            await geocoder.geocode("Roswell, NM")

    async def test_short_query_skipped(self):
        calls = []
        geocoder = Geocoder(access_token="tok", min_interval=0, transport=_mapbox([ROSWELL], calls))
        assert await geocoder.geocode("NM") is None
        assert calls == []


class TestGeocodePendingReports:

    async def test_fills_coordinates_and_marks_misses(self, store, fake_db, add_reports):
        add_reports(
            report_doc("g1", city="Roswell", state_province="New Mexico"),
            report_doc("g2", location_name="Atlantis"),
        )

        def handler(request: httpx.Request) -> httpx.Response:
            features = [ROSWELL] if "Roswell" in request.url.path else []
            return httpx.Response(200, json={"features": features})

        geocoder = Geocoder(access_token="tok", min_interval=0, transport=httpx.MockTransport(handler))
        updated, errors = await geocode_pending_reports(store, geocoder, limit=10)

        assert (updated, errors) == (1, [])
        docs = {d["_id"]: d for d in fake_db["reports"].docs}
        assert docs["g1"]["latitude"] == pytest.approx(33.39)
        assert docs["g2"]["geocode_failed"] is True
        assert await store.fetch_reports_to_geocode(10) == []

    async def test_unavailable_provider_leaves_report_pending(self, store, fake_db, add_reports):
        add_reports(
            report_doc("g1", city="Roswell", state_province="New Mexico"),
            report_doc("g2", location_name="Atlantis"),
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        geocoder = Geocoder(access_token="tok", min_interval=0, transport=transport)

        updated, errors = await geocode_pending_reports(store, geocoder, limit=10)

        assert updated == 0
        assert len(errors) == 1 and errors[0].startswith("geocode g1:")
        assert geocoder.requests_made == 1
        assert all("geocode_failed" not in d for d in fake_db["reports"].docs)
        assert len(await store.fetch_reports_to_geocode(10)) == 2
