"""Pricing cache for the model catalog.

Prices in ``catalog.MODELS`` go stale as providers change them. A JSON cache
(``~/.cache/quorum/pricing.json``) can override them; ``apply_cached_pricing``
returns refreshed copies and leaves the catalog itself untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from quorum.catalog import MODELS
from quorum.config import DEFAULT_CACHE_DIR
from quorum.types import Model

logger = logging.getLogger(__name__)

PRICING_CACHE_FILE = DEFAULT_CACHE_DIR / "pricing.json"
STALE_AFTER = timedelta(days=7)

PRICING_SOURCES: dict[str, str] = {
    "openai": "https://openai.com/api/pricing/",
    "anthropic": "https://www.anthropic.com/pricing",
    "google": "https://ai.google.dev/pricing",
    "xai": "https://x.ai/api",
    "perplexity": "https://docs.perplexity.ai/guides/pricing",
}
"""Where to look up current prices when refreshing the cache by hand."""


class ModelPrice(BaseModel):
    input_price_per_m: float
    output_price_per_m: float
    typical_latency_ms: int | None = None


class PricingCache(BaseModel):
    """On-disk pricing snapshot keyed by model id."""

    updated_at: datetime
    models: dict[str, ModelPrice] = Field(default_factory=dict)


def load_pricing_cache(path: Path = PRICING_CACHE_FILE) -> PricingCache | None:
    """Read the cache, returning ``None`` when it is missing or unreadable."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return PricingCache.model_validate_json(raw)
    except ValidationError:
        logger.warning("Ignoring malformed pricing cache at %s", path)
        return None


def save_pricing_cache(cache: PricingCache, path: Path = PRICING_CACHE_FILE) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(cache.model_dump_json(indent=2), encoding="utf-8")


def snapshot_pricing(models: Sequence[Model] | None = None) -> PricingCache:
    """Build a cache from the prices currently known for *models*."""
    prices = {
        m.model_id: ModelPrice(
            input_price_per_m=m.input_price_per_m,
            output_price_per_m=m.output_price_per_m,
            typical_latency_ms=m.typical_latency_ms,
        )
        for m in (MODELS if models is None else models)
        if m.input_price_per_m is not None and m.output_price_per_m is not None
    }
    return PricingCache(updated_at=datetime.now(UTC), models=prices)


def days_since_update(path: Path = PRICING_CACHE_FILE, *, now: datetime | None = None) -> int | None:
    cache = load_pricing_cache(path)
    if cache is None:
        return None
    now = now or datetime.now(UTC)
    return (now - cache.updated_at).days


def is_pricing_stale(path: Path = PRICING_CACHE_FILE, *, now: datetime | None = None) -> bool:
    """True when there is no cache or it is older than seven days."""
    cache = load_pricing_cache(path)
    if cache is None:
        return True
    now = now or datetime.now(UTC)
    return now - cache.updated_at > STALE_AFTER


def apply_cached_pricing(
    models: Sequence[Model] | None = None, path: Path = PRICING_CACHE_FILE
) -> list[Model]:
    """Return *models* with prices overridden from the cache.

    Models absent from the cache are returned unchanged. Each updated model
    is a new frozen instance.
    """
    source = list(MODELS if models is None else models)
    cache = load_pricing_cache(path)
    if cache is None:
        return source
    refreshed: list[Model] = []
    for model in source:
        price = cache.models.get(model.model_id)
        if price is None:
            refreshed.append(model)
            continue
        update: dict[str, object] = {
            "input_price_per_m": price.input_price_per_m,
            "output_price_per_m": price.output_price_per_m,
        }
        if price.typical_latency_ms:
            update["typical_latency_ms"] = price.typical_latency_ms
        refreshed.append(model.model_copy(update=update))
    return refreshed


def stale_warning(path: Path = PRICING_CACHE_FILE, *, now: datetime | None = None) -> str | None:
    """Human-readable warning when pricing data is missing or old."""
    days = days_since_update(path, now=now)
    if days is None:
        return "No pricing cache found. Prices come from the built-in catalog."
    if days > STALE_AFTER.days:
        return f"Pricing data is {days} days old. Refresh {path.name} to update estimates."
    return None
