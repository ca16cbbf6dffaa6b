"""
Optional text enrichment through an Ollama-compatible API.

Given the raw category -> output map collected by system discovery, asks a
local model for a structured JSON summary. The engine never depends on
this for correctness: every failure is raised as ServiceUnavailable and the
caller falls back to direct parsing.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from config import settings
from services.errors import ServiceUnavailable

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """Analyze the following Linux system information and respond with ONLY a JSON object
with these keys: operating_system, os_version, architecture, kernel_version, hostname,
uptime, total_memory, package_manager, available_updates (int), security_updates (int),
running_services (list of str), network_interfaces (list of str), system_load, disk_info,
confidence (0.0-1.0, how sure you are of the values).

{sections}
"""

# Raw output per section is capped to keep prompts small
_MAX_SECTION_CHARS = 2000


def build_prompt(raw: Dict[str, str]) -> str:
    sections = "\n\n".join(
        f"=== {key.upper()} ===\n{value[:_MAX_SECTION_CHARS]}" for key, value in raw.items()
    )
    return PROMPT_TEMPLATE.format(sections=sections)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Return the JSON object between the first '{' and the last '}'."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("No JSON object in enrichment response")
    data = json.loads(text[start:end])
    if not isinstance(data, dict):
        raise ValueError("Enrichment response is not a JSON object")
    return data


class SystemInfoEnricher:
    """Client for the enrichment model."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.ENRICHMENT_URL) or None
        self.model = model or settings.ENRICHMENT_MODEL
        self.timeout = timeout or settings.ENRICHMENT_TIMEOUT
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def summarize(self, raw: Dict[str, str]) -> Dict[str, Any]:
        """
        Structured summary of a raw fact sheet.

        Raises:
            ServiceUnavailable: not configured, unreachable, or unusable answer
        """
        if not self.is_configured:
            raise ServiceUnavailable("Enrichment service is not configured")

        payload = {"model": self.model, "prompt": build_prompt(raw), "stream": False}
        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.RequestError as e:
            logger.warning(f"Enrichment request failed: {e}")
            raise ServiceUnavailable(f"Enrichment request failed: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Enrichment service returned status {e.response.status_code}")
            raise ServiceUnavailable(
                f"Enrichment service returned status {e.response.status_code}"
            ) from e
        except ValueError as e:
            raise ServiceUnavailable(f"Enrichment service returned invalid JSON: {e}") from e

        text = body.get("response") if isinstance(body, dict) else None
        if not isinstance(text, str):
            logger.warning(f"Unexpected enrichment response shape: {type(body).__name__}")
            raise ServiceUnavailable("Enrichment service returned no text response")
        try:
            return extract_json_object(text)
        except ValueError as e:
            logger.warning(f"Could not parse enrichment output: {e}")
            raise ServiceUnavailable(f"Could not parse enrichment output: {e}") from e

    async def check(self) -> bool:
        """True if the enrichment endpoint answers."""
        if not self.is_configured:
            return False
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                return response.status_code == 200
        except httpx.RequestError:
            return False
