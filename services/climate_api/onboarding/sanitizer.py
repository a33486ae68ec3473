"""
Sanitizer for LLM-generated hotspot and quick-win JSON.

Everything the completion service returns is untrusted. This module turns
raw completion text into fully-defaulted, frozen records, or drops the item.
No partially-defaulted record leaves this module: every field downstream code
reads has been validated or defaulted here.

Parsing never raises. A completion that cannot be decoded is logged and
treated as zero items.
"""

from __future__ import annotations

import json
import logging
import math
import random
from dataclasses import dataclass
from typing import Any, Optional

from services.climate_api.onboarding.catalog import ModuleSpec
from services.climate_api.onboarding.errors import MalformedResponseError
from services.climate_api.onboarding.types import Coordinates

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Allow-lists and defaults
# ---------------------------------------------------------------------------

VALID_SEVERITIES = frozenset({"low", "medium", "high", "critical"})
VALID_LEVELS = frozenset({"low", "medium", "high"})
VALID_TRENDS = frozenset({"up", "down", "stable"})

DEFAULT_SEVERITY = "medium"
DEFAULT_LEVEL = "medium"
DEFAULT_NEIGHBORHOOD = "City Center"
DEFAULT_ESTIMATED_DAYS = 30.0

PROVENANCE_TAG = "ai-generated"

# Offsets from the city center, in degrees
OFFSET_LIMIT = 0.05
JITTER_LIMIT = 0.02


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HotspotMetric:
    key: str
    value: float
    unit: Optional[str] = None
    trend: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"key": self.key, "value": self.value}
        if self.unit is not None:
            data["unit"] = self.unit
        if self.trend is not None:
            data["trend"] = self.trend
        return data


@dataclass(frozen=True)
class SanitizedHotspot:
    name: str
    description: str
    neighborhood: str
    address: Optional[str]
    lat_offset: float
    lng_offset: float
    severity: str
    display_value: str
    metrics: tuple[HotspotMetric, ...]

    def position(self, center: Coordinates) -> Coordinates:
        return center.offset(self.lat_offset, self.lng_offset)


@dataclass(frozen=True)
class SanitizedQuickWin:
    title: str
    description: str
    impact: str
    effort: str
    estimated_days: float
    co2_reduction_tons: Optional[float]
    tags: tuple[str, ...]
    steps: Optional[tuple[str, ...]]


# ---------------------------------------------------------------------------
# JSON decoding
# ---------------------------------------------------------------------------

def _decode(text: str) -> Any:
    """
    Decode completion text as JSON. Tolerates markdown code fences.

    Raises MalformedResponseError when nothing decodes.
    """
    text = (text or "").strip()
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        pass

    if "```" in text:
        for block in text.split("```"):
            block = block.strip()
            if block.startswith("json"):
                block = block[4:].strip()
            try:
                return json.loads(block)
            except (ValueError, RecursionError):
                continue

    raise MalformedResponseError(f"completion is not valid JSON: {text[:200]!r}")


def extract_items(text: str, key: str) -> list[Any]:
    """
    Pull the list under `key` out of completion text.

    Accepts {"<key>": [...]} or a bare array. Returns [] on any parse
    failure or shape mismatch.
    """
    try:
        data = _decode(text)
    except MalformedResponseError as exc:
        logger.error("Failed to parse %s response: %s", key, exc)
        return []

    if isinstance(data, dict):
        items = data.get(key, [])
        if isinstance(items, list):
            return items
        logger.warning("Expected list under %r, got %s", key, type(items).__name__)
        return []
    if isinstance(data, list):
        return data

    logger.warning("Unexpected %s response shape: %s", key, type(data).__name__)
    return []


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def _text(value: Any) -> Optional[str]:
    """Non-empty stripped string, or None. Numbers are stringified."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _number(value: Any) -> Optional[float]:
    """Finite float, or None. Booleans are not numbers here."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _choice(value: Any, allowed: frozenset[str], default: str) -> str:
    text = _text(value)
    if text is None:
        return default
    text = text.lower()
    return text if text in allowed else default


def _offset(value: Any, rng: random.Random) -> float:
    number = _number(value)
    if number is None:
        return rng.uniform(-JITTER_LIMIT, JITTER_LIMIT)
    return max(-OFFSET_LIMIT, min(OFFSET_LIMIT, number))


def _string_list(value: Any) -> Optional[list[str]]:
    if not isinstance(value, list):
        return None
    return [s for s in (_text(v) for v in value) if s is not None]


def _metric(raw: Any) -> Optional[HotspotMetric]:
    if not isinstance(raw, dict):
        return None
    key = _text(raw.get("key"))
    value = _number(raw.get("value"))
    if key is None or value is None:
        return None
    trend = _text(raw.get("trend"))
    trend = trend.lower() if trend else None
    return HotspotMetric(
        key=key,
        value=value,
        unit=_text(raw.get("unit")),
        trend=trend if trend in VALID_TRENDS else None,
    )


# ---------------------------------------------------------------------------
# Item sanitizers
# ---------------------------------------------------------------------------

def sanitize_hotspot(
    raw: Any,
    module: ModuleSpec,
    city_name: str,
    rng: Optional[random.Random] = None,
) -> Optional[SanitizedHotspot]:
    """Validate one raw hotspot. Returns None when it has no usable name."""
    if not isinstance(raw, dict):
        return None
    name = _text(raw.get("name"))
    if name is None:
        return None

    rng = rng or random.Random()
    metrics = raw.get("metrics")
    metrics = metrics if isinstance(metrics, list) else []

    return SanitizedHotspot(
        name=name,
        description=_text(raw.get("description")) or f"{module.name} hotspot detected in {city_name}",
        neighborhood=_text(raw.get("neighborhood")) or DEFAULT_NEIGHBORHOOD,
        address=_text(raw.get("address")),
        lat_offset=_offset(raw.get("latOffset"), rng),
        lng_offset=_offset(raw.get("lngOffset"), rng),
        severity=_choice(raw.get("severity"), VALID_SEVERITIES, DEFAULT_SEVERITY),
        display_value=_text(raw.get("displayValue")) or "",
        metrics=tuple(m for m in (_metric(r) for r in metrics) if m is not None),
    )


def sanitize_quick_win(
    raw: Any,
    module: ModuleSpec,
    city_name: str,
) -> Optional[SanitizedQuickWin]:
    """Validate one raw quick win. Returns None when it has no usable title."""
    if not isinstance(raw, dict):
        return None
    title = _text(raw.get("title"))
    if title is None:
        return None

    tags = _string_list(raw.get("tags"))
    if tags is None:
        tags = [module.slug]
    tags = list(dict.fromkeys(t for t in tags if t != PROVENANCE_TAG))
    tags.append(PROVENANCE_TAG)

    steps = _string_list(raw.get("steps"))
    estimated_days = _number(raw.get("estimatedDays"))

    return SanitizedQuickWin(
        title=title,
        description=(
            _text(raw.get("description"))
            or f"{module.name} improvement opportunity in {city_name}"
        ),
        impact=_choice(raw.get("impact"), VALID_LEVELS, DEFAULT_LEVEL),
        effort=_choice(raw.get("effort"), VALID_LEVELS, DEFAULT_LEVEL),
        estimated_days=estimated_days if estimated_days is not None else DEFAULT_ESTIMATED_DAYS,
        co2_reduction_tons=_number(raw.get("co2ReductionTons")),
        tags=tuple(tags),
        steps=tuple(steps) if steps is not None else None,
    )


def sanitize_hotspots(
    text: str,
    module: ModuleSpec,
    city_name: str,
    rng: Optional[random.Random] = None,
) -> list[SanitizedHotspot]:
    """Parse and sanitize a hotspot completion. Never raises."""
    rng = rng or random.Random()
    raw_items = extract_items(text, "hotspots")
    hotspots = [
        h for h in (sanitize_hotspot(r, module, city_name, rng) for r in raw_items)
        if h is not None
    ]
    if len(hotspots) < len(raw_items):
        logger.info(
            "Dropped %d/%d %s hotspots without a name",
            len(raw_items) - len(hotspots), len(raw_items), module.slug,
        )
    return hotspots


def sanitize_quick_wins(
    text: str,
    module: ModuleSpec,
    city_name: str,
) -> list[SanitizedQuickWin]:
    """Parse and sanitize a quick-win completion. Never raises."""
    raw_items = extract_items(text, "quickWins")
    quick_wins = [
        q for q in (sanitize_quick_win(r, module, city_name) for r in raw_items)
        if q is not None
    ]
    if len(quick_wins) < len(raw_items):
        logger.info(
            "Dropped %d/%d %s quick wins without a title",
            len(raw_items) - len(quick_wins), len(raw_items), module.slug,
        )
    return quick_wins
