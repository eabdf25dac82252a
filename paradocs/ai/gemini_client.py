"""
GeminiClient — Async wrapper around the Google Generative AI SDK.

The pattern engine uses it for one thing: turning a Pattern's numbers into
a short narrative for the insight endpoint. The engine treats the result
as opaque prose and never parses it.

Supports two runtime modes (set via AI_MOCK_MODE env var):
  - MOCK mode (default): returns deterministic canned responses.
    Use for tests and local dev without API keys.
  - REAL mode: makes actual Gemini API calls.
    Requires GEMINI_API_KEY to be set.
"""

import logging
import os
from enum import Enum
from typing import Any

# Python 3.14 + protobuf native extension can fail when importing Gemini deps.
# Keep this as default-only so users can still override it explicitly.
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai

from paradocs.core.config import settings
from paradocs.models.pattern import Pattern
from paradocs.models.report import category_name

logger = logging.getLogger(__name__)


class GeminiModel(str, Enum):
    FLASH = "gemini-2.5-flash"


SYSTEM_PROMPT = (
    "You are an expert researcher analyzing an archive of anomalous-phenomenon reports. "
    "Describe what the grouped reports have in common and what would be worth checking next. "
    "Report volume often reflects historical archive imports, not real-world activity: "
    "do not speculate about why there are many reports. Write two short paragraphs, no headings."
)

_MOCK_RESPONSES: dict[str, str] = {
    "default": (
        "[MOCK] This is a placeholder Gemini response. "
        "Set AI_MOCK_MODE=false and provide GEMINI_API_KEY for real responses."
    ),
    "pattern_narrative": (
        "[MOCK] The reports in this pattern describe broadly similar observations "
        "clustered in place and time. Witness accounts share recurring details about "
        "appearance and behaviour, which makes the grouping worth a closer look.\n\n"
        "Cross-referencing the dates against local news archives and weather records "
        "would be the natural next step before drawing any conclusions."
    ),
}


def build_pattern_prompt(pattern: Pattern) -> str:
    """Plain-text summary of a Pattern's key figures for the model."""
    lines = [
        f"Analyze this {pattern.pattern_type.replace('_', ' ')} pattern: {pattern.title}",
        "",
        "## Key Data",
        f"- Report Count: {pattern.report_count}",
        f"- Pattern Status: {pattern.status}",
    ]
    if pattern.first_report_date:
        period = pattern.first_report_date.strftime("%B %Y")
        if pattern.last_report_date:
            period += f" to {pattern.last_report_date.strftime('%B %Y')}"
        lines.append(f"- Event Period: {period}")
    if pattern.center_lat is not None and pattern.center_lng is not None:
        lines.append(f"- Approximate Location: {pattern.center_lat:.2f}°, {pattern.center_lng:.2f}°")
    if pattern.radius_km:
        lines.append(f"- Geographic Spread: ~{pattern.radius_km:g} km radius")
    density = pattern.metadata.get("density")
    if density:
        lines.append(f"- Spatial Density: {density:.2f} reports/km²")
    if pattern.categories:
        lines.append("- Phenomena Types: " + ", ".join(category_name(c) for c in pattern.categories))
    return "\n".join(lines)


class GeminiClient:
    """
    Central Gemini interface for the pattern engine.

    Don't instantiate per-request; use the module-level `gemini_client`
    singleton.
    """

    def __init__(self) -> None:
        self.mock_mode = settings.ai_mock_mode

        if not self.mock_mode:
            if not settings.gemini_api_key:
                logger.warning(
                    "GEMINI_API_KEY not set — falling back to mock mode. "
                    "Set AI_MOCK_MODE=true to silence this warning."
                )
                self.mock_mode = True
            else:
                genai.configure(api_key=settings.gemini_api_key)
                self._genai = genai

        if self.mock_mode:
            logger.info("GeminiClient initialised in MOCK mode")
        else:
            logger.info("GeminiClient initialised in REAL mode (model: %s)", GeminiModel.FLASH.value)

    async def generate(
        self,
        prompt: str,
        model: GeminiModel = GeminiModel.FLASH,
        response_key: str = "default",
        **generation_kwargs: Any,
    ) -> str:
        """
        Generate text from a Gemini model.

        Raises:
            Exception: Propagates Gemini SDK errors in real mode.
        """
        if self.mock_mode:
            return _MOCK_RESPONSES.get(response_key, _MOCK_RESPONSES["default"])

        try:
            gemini_model = self._genai.GenerativeModel(model.value, system_instruction=SYSTEM_PROMPT)
            response = await gemini_model.generate_content_async(prompt, **generation_kwargs)
            return response.text
        except Exception as exc:
            logger.error("Gemini API error (model=%s): %s", model.value, exc)
            raise

    async def generate_pattern_narrative(self, pattern: Pattern) -> str:
        """Short narrative prose for a Pattern."""
        return await self.generate(build_pattern_prompt(pattern), response_key="pattern_narrative")


# Module-level singleton: import and use this everywhere
gemini_client = GeminiClient()
