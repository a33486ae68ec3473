"""
Completion client for onboarding content generation.

Posts chat-completion requests to an OpenAI-compatible endpoint and returns
the raw completion text. Single attempt: there is no retry. A non-2xx
response, a transport failure, or an empty completion body raises
GenerationError, which the orchestrator records as that module's failure.

generate_hotspots / generate_quick_wins chain prompt building, the
completion call and sanitization for one module.

Usage:
    async with CompletionClient(api_key) as client:
        hotspots = await generate_hotspots(client, module, request)
"""

from __future__ import annotations

import logging
import random
from typing import Any, Optional

import httpx

from services.climate_api.config import settings
from services.climate_api.onboarding.catalog import (
    ModuleSpec,
    build_hotspot_prompt,
    build_quick_win_prompt,
)
from services.climate_api.onboarding.errors import ConfigurationError, GenerationError
from services.climate_api.onboarding.sanitizer import (
    SanitizedHotspot,
    SanitizedQuickWin,
    sanitize_hotspots,
    sanitize_quick_wins,
)
from services.climate_api.onboarding.types import OnboardingRequest

logger = logging.getLogger(__name__)

# Hotspots run hotter to vary placement and severity; quick wins stay concrete
HOTSPOT_TEMPERATURE = 0.8
HOTSPOT_MAX_TOKENS = 2000
QUICK_WIN_TEMPERATURE = 0.7
QUICK_WIN_MAX_TOKENS = 1500


def _message_content(body: Any) -> Optional[str]:
    """choices[0].message.content, or None when absent. Raises GenerationError on a malformed body."""
    if not isinstance(body, dict):
        raise _unexpected_shape(body)
    choices = body.get("choices") or [{}]
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise _unexpected_shape(body)
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        raise _unexpected_shape(body)
    content = message.get("content")
    if content is not None and not isinstance(content, str):
        raise _unexpected_shape(body)
    return content


def _unexpected_shape(body: Any) -> GenerationError:
    logger.error("Unexpected completion body: %s", str(body)[:500])
    return GenerationError("Unexpected OpenAI response shape")


class CompletionClient:
    """Thin wrapper over the chat-completions endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ConfigurationError("completion service API key is empty")
        self.api_key = api_key
        self.model = model or settings.openai_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.completion_timeout_s
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def complete(
        self,
        system: str,
        user: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Send one prompt and return the completion text. Raises GenerationError."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            resp = await self._http.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout_s,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error(
                "Completion API error status=%d body=%s",
                status, exc.response.text[:500],
            )
            raise GenerationError(
                f"OpenAI API error ({status}): {exc.response.reason_phrase}",
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"OpenAI API request failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise GenerationError("OpenAI API returned a non-JSON body") from exc
        content = _message_content(body)
        if not content:
            logger.error("Empty completion body: %s", str(body)[:500])
            raise GenerationError("No content in OpenAI response")

        usage = body.get("usage")
        usage = usage if isinstance(usage, dict) else {}
        logger.debug(
            "Completion ok model=%s prompt_tokens=%s completion_tokens=%s",
            self.model, usage.get("prompt_tokens"), usage.get("completion_tokens"),
        )
        return content


# ---------------------------------------------------------------------------
# Per-module generation
# ---------------------------------------------------------------------------

async def generate_hotspots(
    client: CompletionClient,
    module: ModuleSpec,
    request: OnboardingRequest,
    rng: Optional[random.Random] = None,
) -> list[SanitizedHotspot]:
    """Generate and sanitize one module's hotspots. Zero items is not an error."""
    prompt = build_hotspot_prompt(
        module,
        request.city_name,
        request.country,
        request.coordinates,
        request.population,
        request.unit,
    )
    text = await client.complete(
        prompt.system,
        prompt.user,
        temperature=HOTSPOT_TEMPERATURE,
        max_tokens=HOTSPOT_MAX_TOKENS,
    )
    return sanitize_hotspots(text, module, request.city_name, rng)


async def generate_quick_wins(
    client: CompletionClient,
    module: ModuleSpec,
    request: OnboardingRequest,
) -> list[SanitizedQuickWin]:
    """Generate and sanitize one module's quick wins. Zero items is not an error."""
    prompt = build_quick_win_prompt(module, request.city_name, request.country)
    text = await client.complete(
        prompt.system,
        prompt.user,
        temperature=QUICK_WIN_TEMPERATURE,
        max_tokens=QUICK_WIN_MAX_TOKENS,
    )
    return sanitize_quick_wins(text, module, request.city_name)
