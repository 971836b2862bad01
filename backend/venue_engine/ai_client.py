"""OpenAI-compatible chat client that scores the compatibility of two profiles."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .errors import ScoringUnavailable
from .metrics import record_provider_call
from .models import CompatibilityFactors, CompatibilityScore, PreferenceProfile
from .settings import settings

logger = logging.getLogger(__name__)

AI_CONFIDENCE = 0.9

SUB_SCORES = ("cuisine_score", "vibe_score", "price_score", "timing_score", "activity_score")

SYSTEM_PROMPT = """You are a dining compatibility analyzer. Compare the preferences of two \
people and return a structured JSON response.

Analyze these dimensions:
1. Cuisine compatibility (preferred_cuisines)
2. Vibe compatibility (preferred_vibes)
3. Price range compatibility (preferred_price_range)
4. Timing compatibility (preferred_times)
5. Activities and dietary restrictions (preferred_activities, dietary_restrictions)

For each dimension give a score between 0 and 1, considering overlaps, complementary
preferences and conflicts.

Return ONLY a JSON object with this exact structure:
{
  "overall_score": number,
  "cuisine_score": number,
  "vibe_score": number,
  "price_score": number,
  "timing_score": number,
  "activity_score": number,
  "confidence": number,
  "compatibility_factors": {
    "shared_cuisines": string[],
    "shared_vibes": string[],
    "shared_price_ranges": string[],
    "shared_times": string[],
    "shared_activities": string[],
    "shared_dietary": string[],
    "reasoning": string
  }
}"""

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Scored:
    score: CompatibilityScore


@dataclass(frozen=True, slots=True)
class Unavailable:
    reason: str


AIResult = Scored | Unavailable


class AIScorer(Protocol):
    async def __call__(self, a: PreferenceProfile, b: PreferenceProfile) -> AIResult: ...


def _profile_lines(label: str, profile: PreferenceProfile) -> str:
    fields = (
        ("Cuisines", profile.cuisines),
        ("Vibes", profile.vibes),
        ("Price Range", profile.price_tiers),
        ("Times", profile.preferred_times),
        ("Activities", profile.activities),
        ("Dietary Restrictions", profile.dietary_restrictions),
    )
    body = "\n".join(f"- {name}: {json.dumps(sorted(values))}" for name, values in fields)
    return f"{label} Preferences:\n{body}"


def build_messages(a: PreferenceProfile, b: PreferenceProfile) -> list[dict[str, str]]:
    user_prompt = "Analyze compatibility between these two people:\n\n{}\n\n{}".format(
        _profile_lines("Person 1", a), _profile_lines("Person 2", b)
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def extract_json_object(raw: Any) -> dict[str, Any]:
    """Pull the first JSON object out of model output, tolerating prose and code fences."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("reply is empty")
    text = raw.strip()
    fence = _CODE_FENCE_RE.search(text)
    if fence:
        text = fence.group(1).strip()
    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char != "{":
            continue
        try:
            obj, _ = decoder.raw_decode(text[index:])
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    raise ValueError("no JSON object in reply")


def _unit(payload: dict[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} missing or not a number")
    if not 0.0 <= float(value) <= 1.0:
        raise ValueError(f"{key} out of range: {value}")
    return float(value)


def _strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(sorted(str(item) for item in value if isinstance(item, (str, int))))


def parse_score(payload: dict[str, Any]) -> CompatibilityScore:
    """Validate the model's JSON; raises ValueError on any shape problem."""
    scores = {key: _unit(payload, key) for key in ("overall_score", *SUB_SCORES)}
    confidence = payload.get("confidence")
    try:
        confidence_value = _unit(payload, "confidence") if confidence is not None else AI_CONFIDENCE
    except ValueError:
        confidence_value = AI_CONFIDENCE
    factors = payload.get("compatibility_factors") or {}
    if not isinstance(factors, dict):
        raise ValueError("compatibility_factors must be an object")
    return CompatibilityScore(
        **scores,
        compatibility_factors=CompatibilityFactors(
            shared_cuisines=_strings(factors.get("shared_cuisines")),
            shared_vibes=_strings(factors.get("shared_vibes")),
            shared_price_ranges=_strings(factors.get("shared_price_ranges")),
            shared_times=_strings(factors.get("shared_times")),
            shared_activities=_strings(factors.get("shared_activities")),
            shared_dietary=_strings(factors.get("shared_dietary")),
            reasoning=str(factors.get("reasoning") or ""),
        ),
        confidence=confidence_value,
        source="ai",
    )


class CompatibilityAIClient:
    """Calls a chat-completions endpoint; every failure becomes ``Unavailable``."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.AI_API_KEY
        self._api_base = (api_base or settings.AI_API_BASE).rstrip("/")
        self._model = model or settings.AI_MODEL
        self._timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        timeout=httpx.Timeout(
                            self._timeout, connect=settings.AI_CONNECT_TIMEOUT_SECONDS
                        )
                    )
        return self._client

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not (self._api_key or "").strip():
            raise ScoringUnavailable("AI_API_KEY not configured")
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            response = await client.post(
                f"{self._api_base}/chat/completions", json=payload, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ScoringUnavailable(f"request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ScoringUnavailable(f"AI API error {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise ScoringUnavailable("invalid JSON from AI API") from exc

    async def score(self, a: PreferenceProfile, b: PreferenceProfile) -> AIResult:
        started = time.perf_counter()
        try:
            body = await self._post(
                {
                    "model": self._model,
                    "messages": build_messages(a, b),
                    "temperature": settings.AI_TEMPERATURE,
                }
            )
            try:
                content = body["choices"][0]["message"]["content"]
                result = parse_score(extract_json_object(content))
            except (KeyError, IndexError, TypeError, ValueError) as exc:
                raise ScoringUnavailable(f"malformed AI reply: {exc}") from exc
        except ScoringUnavailable as exc:
            record_provider_call("analyze_compatibility", "error", time.perf_counter() - started)
            logger.warning("AI compatibility scoring unavailable: %s", exc)
            return Unavailable(str(exc))
        record_provider_call("analyze_compatibility", "ok", time.perf_counter() - started)
        return Scored(result)

    __call__ = score

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = [
    "AIResult",
    "AIScorer",
    "CompatibilityAIClient",
    "Scored",
    "Unavailable",
    "build_messages",
    "extract_json_object",
    "parse_score",
]
