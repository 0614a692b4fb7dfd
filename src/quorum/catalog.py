"""Static model catalog and tier-based model selection."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Literal

from quorum.config import provider_env_var
from quorum.types import Model, ThinkingLevel, Usage


def _m(
    provider: str,
    model_id: str,
    display_name: str,
    cost_tier: str,
    input_price: float,
    output_price: float,
    latency_ms: int,
    *,
    deep: bool = False,
) -> Model:
    return Model(
        provider=provider,  # type: ignore[arg-type]
        model_id=model_id,
        display_name=display_name,
        is_deep_research=deep,
        cost_tier=cost_tier,  # type: ignore[arg-type]
        input_price_per_m=input_price,
        output_price_per_m=output_price,
        typical_latency_ms=latency_ms,
    )


# Prices are USD per million tokens. Order matters: tier selection takes the
# first match.
MODELS: list[Model] = [
    # OpenAI: GPT-5 series
    _m("openai", "gpt-5.2", "GPT-5.2", "high", 1.75, 14.00, 5000),
    _m("openai", "gpt-5.2-pro", "GPT-5.2 Pro", "very-high", 21.00, 168.00, 15000),
    _m("openai", "gpt-5.1-codex", "GPT-5.1 Codex", "high", 1.25, 10.00, 5000),
    _m("openai", "gpt-5.1-codex-mini", "GPT-5.1 Codex Mini", "medium", 0.30, 1.20, 2000),
    _m("openai", "gpt-5", "GPT-5", "high", 1.25, 10.00, 5000),
    _m("openai", "gpt-5-codex", "GPT-5 Codex", "high", 1.25, 10.00, 5000),
    _m("openai", "gpt-5-mini", "GPT-5 Mini", "medium", 0.30, 1.20, 2000),
    _m("openai", "gpt-5-nano", "GPT-5 Nano", "low", 0.10, 0.40, 1000),
    # OpenAI: GPT-4 series
    _m("openai", "gpt-4o-mini", "GPT-4o Mini", "low", 0.15, 0.60, 1500),
    _m("openai", "gpt-4o", "GPT-4o", "medium", 2.50, 10.00, 3000),
    _m("openai", "gpt-4.1", "GPT-4.1", "medium", 2.00, 8.00, 3000),
    # OpenAI: o-series reasoning
    _m("openai", "o3", "O3", "high", 2.00, 8.00, 10000),
    _m("openai", "o3-pro", "O3 Pro", "very-high", 10.00, 40.00, 20000),
    _m("openai", "o3-mini", "O3 Mini", "medium", 0.55, 2.20, 3000),
    _m("openai", "o4-mini", "O4 Mini", "medium", 1.10, 4.40, 3000),
    # OpenAI: deep research (Responses API, background mode)
    _m("openai", "o3-deep-research-2025-06-26", "O3 Deep Research", "very-high",
       10.00, 40.00, 180000, deep=True),
    _m("openai", "o4-mini-deep-research-2025-06-26", "O4 Mini Deep Research", "high",
       2.00, 8.00, 60000, deep=True),
    # Anthropic
    _m("anthropic", "claude-opus-4-5-20251101", "Claude Opus 4.5", "very-high", 15.00, 75.00, 15000),
    _m("anthropic", "claude-sonnet-4-5-20250514", "Claude Sonnet 4.5", "high", 3.00, 15.00, 5000),
    _m("anthropic", "claude-opus-4-20250514", "Claude Opus 4", "high", 15.00, 75.00, 12000),
    _m("anthropic", "claude-sonnet-4-20250514", "Claude Sonnet 4", "medium", 3.00, 15.00, 4000),
    _m("anthropic", "claude-3-5-haiku-latest", "Claude 3.5 Haiku", "low", 0.25, 1.25, 1500),
    # Google
    _m("google", "gemini-3-pro-preview", "Gemini 3 Pro", "high", 1.25, 5.00, 5000),
    _m("google", "gemini-2.5-pro", "Gemini 2.5 Pro", "medium", 1.25, 5.00, 4000),
    _m("google", "gemini-2.5-flash", "Gemini 2.5 Flash", "low", 0.15, 0.60, 1500),
    _m("google", "gemini-2.0-flash", "Gemini 2.0 Flash", "low", 0.10, 0.40, 1000),
    _m("google", "gemini-2.0-flash-lite", "Gemini 2.0 Flash Lite", "low", 0.05, 0.20, 800),
    # Google: deep research agent (Interactions API, background mode)
    _m("google", "deep-research-pro-preview-12-2025", "Gemini Deep Research", "high",
       2.00, 12.00, 300000, deep=True),
    # xAI
    _m("xai", "grok-4", "Grok 4", "high", 2.00, 10.00, 5000),
    _m("xai", "grok-4-1-fast-reasoning", "Grok 4.1 Fast", "medium", 1.00, 5.00, 3000),
    _m("xai", "grok-3", "Grok 3", "medium", 1.00, 5.00, 3000),
    _m("xai", "grok-3-fast", "Grok 3 Fast", "low", 0.20, 1.00, 1500),
    # Perplexity
    _m("perplexity", "sonar", "Perplexity Sonar", "low", 1.00, 1.00, 2000),
    _m("perplexity", "sonar-pro", "Perplexity Sonar Pro", "medium", 3.00, 15.00, 5000, deep=True),
    _m("perplexity", "sonar-deep-research", "Perplexity Deep Research", "high",
       5.00, 20.00, 120000, deep=True),
]

ModelMode = Literal["default", "deep", "opinion", "debate", "quick"]

BEST_MODELS: dict[ModelMode, list[str]] = {
    "default": ["gpt-5.2", "gemini-3-pro-preview", "claude-sonnet-4-5-20250514", "grok-4"],
    "deep": [
        "o3-deep-research-2025-06-26",
        "deep-research-pro-preview-12-2025",
        "sonar-deep-research",
        "o4-mini-deep-research-2025-06-26",
    ],
    "opinion": ["gemini-3-pro-preview", "gemini-2.5-pro", "gpt-5.2", "grok-4"],
    "debate": ["gpt-5.2", "gemini-3-pro-preview", "grok-4", "claude-sonnet-4-5-20250514"],
    "quick": ["gpt-5-nano", "gemini-2.0-flash-lite", "grok-3-fast", "claude-3-5-haiku-latest"],
}
"""Preferred model ids per usage mode, best first."""

SYNTHESIS_MODEL_IDS = ("claude-3-5-haiku-latest", "gpt-4o-mini")

IsAvailable = Callable[[str], bool]


def get_model(id_or_name: str, models: Sequence[Model] | None = None) -> Model | None:
    """Find a model by id, display name, or hyphenated display name (case-insensitive)."""
    wanted = id_or_name.lower()
    for model in MODELS if models is None else models:
        display = model.display_name.lower()
        if wanted in (model.model_id.lower(), display, display.replace(" ", "-")):
            return model
    return None


def _one_per_provider(models: Sequence[Model]) -> list[Model]:
    seen: set[str] = set()
    picked: list[Model] = []
    for model in models:
        if model.provider not in seen:
            seen.add(model.provider)
            picked.append(model)
    return picked


def models_for_level(level: ThinkingLevel, models: Sequence[Model] | None = None) -> list[Model]:
    """Default model list for a thinking level, before availability filtering."""
    pool = list(MODELS if models is None else models)
    if level == "quick":
        return [m for m in pool if m.cost_tier == "low" and not m.is_deep_research][:1]
    if level == "standard":
        return [m for m in pool if m.cost_tier == "medium" and not m.is_deep_research][:1]
    if level == "research":
        return [m for m in pool if m.is_deep_research][:1]
    if level == "consensus":
        return _one_per_provider(
            [m for m in pool if not m.is_deep_research and m.cost_tier != "low"]
        )
    if level == "deep":
        return [m for m in pool if m.is_deep_research]
    return pool[:1]


def deep_research_models(is_available: IsAvailable | None = None) -> list[Model]:
    return [
        m for m in MODELS if m.is_deep_research and (is_available is None or is_available(m.provider))
    ]


def best_available_model(mode: ModelMode, is_available: IsAvailable) -> tuple[Model | None, str | None]:
    """Pick the best model for *mode* among available providers.

    Returns:
        ``(model, warning)``. The warning names the better model and the
        environment variable that would enable it, or explains that nothing
        is available.
    """
    candidates = [m for m in (get_model(i) for i in BEST_MODELS[mode]) if m is not None]
    best = candidates[0] if candidates else None
    for model in candidates:
        if is_available(model.provider):
            warning = None
            if best is not None and model.model_id != best.model_id:
                warning = (
                    f"Best model for {mode}: {best.display_name} "
                    f"(set {provider_env_var(best.provider)} to enable)"
                )
            return model, warning
    hints = ", ".join(f"{m.display_name}: {provider_env_var(m.provider)}" for m in candidates[:3])
    return None, f"No models available for {mode}. Set one of: {hints}"


def best_available_models(
    mode: ModelMode, is_available: IsAvailable, count: int = 3
) -> tuple[list[Model], str | None]:
    """Pick up to *count* available models for *mode*, one per provider."""
    available: list[Model] = []
    unavailable: list[Model] = []
    for model_id in BEST_MODELS[mode]:
        model = get_model(model_id)
        if model is None:
            continue
        if not is_available(model.provider):
            unavailable.append(model)
        elif all(m.provider != model.provider for m in available):
            available.append(model)
        if len(available) >= count:
            break
    warning = None
    if unavailable and len(available) < count:
        missing = ", ".join(
            f"{m.display_name} ({provider_env_var(m.provider)})" for m in unavailable[:2]
        )
        warning = f"More models available: {missing}"
    return available, warning


def cheap_model(is_available: IsAvailable | None = None) -> Model | None:
    """Low-cost model for auxiliary calls, preferring OpenAI."""
    low = [
        m for m in MODELS if m.cost_tier == "low" and (is_available is None or is_available(m.provider))
    ]
    return next((m for m in low if m.provider == "openai"), low[0] if low else None)


def synthesis_model(is_available: IsAvailable) -> Model | None:
    """Model used to merge consensus answers: a preferred small model, else any low tier."""
    for model in MODELS:
        if model.model_id in SYNTHESIS_MODEL_IDS and is_available(model.provider):
            return model
    return next((m for m in MODELS if m.cost_tier == "low" and is_available(m.provider)), None)


def estimate_cost(model: Model, input_tokens: int = 500, output_tokens: int = 1000) -> float:
    """USD cost of a query; defaults approximate a typical question."""
    input_cost = (model.input_price_per_m or 0.0) * input_tokens / 1_000_000
    output_cost = (model.output_price_per_m or 0.0) * output_tokens / 1_000_000
    return input_cost + output_cost


def usage_cost(model: Model, usage: Usage | None) -> Usage | None:
    """Return *usage* with ``estimated_cost`` filled from the model's prices."""
    if usage is None:
        return None
    cost = estimate_cost(model, usage.input_tokens, usage.output_tokens)
    return usage.model_copy(update={"estimated_cost": cost})


def requires_confirmation(model: Model, threshold: float = 0.10) -> bool:
    """Whether a query is expensive enough to warrant asking the user first."""
    return (
        estimate_cost(model) > threshold
        or model.cost_tier == "very-high"
        or model.is_deep_research
    )
