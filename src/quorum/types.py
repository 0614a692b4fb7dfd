"""Core value types for quorum.

``Model`` identifies a queryable backend, ``ModelResponse`` is the result of
one query attempt and ``ConsensusResult`` aggregates a fan-out. Query
failures are carried as ``Err`` values inside ``ModelResponse`` so that
aggregate operations always make progress with whatever succeeded.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class QuorumError(Exception):
    """Base exception for all quorum errors."""


class ConfigurationError(QuorumError):
    """Raised before any network call when a query cannot be configured.

    Covers unknown model ids, missing credentials and tiers with no
    available model.
    """


# ---------------------------------------------------------------------------
# Model identity
# ---------------------------------------------------------------------------

Provider = Literal["openai", "anthropic", "google", "xai", "perplexity"]
"""Provider families with a credential of their own."""

CostTier = Literal["low", "medium", "high", "very-high"]

ThinkingLevel = Literal["quick", "standard", "research", "consensus", "deep"]
"""Named tiers selecting default model(s) for a query.

- ``"quick"``: a single fast, cheap model.
- ``"standard"``: a single strong model.
- ``"research"``: a single deep-research model.
- ``"consensus"``: one strong model per provider plus synthesis.
- ``"deep"``: every deep-research model plus consolidation.
"""


class Model(BaseModel):
    """Identity and pricing metadata of a queryable backend.

    Args:
        provider: Provider family that serves the model.
        model_id: Identifier sent on the wire.
        display_name: Human-readable name.
        is_deep_research: Whether the model runs long, tool-augmented jobs.
        cost_tier: Relative cost bucket.
        input_price_per_m: USD per million input tokens.
        output_price_per_m: USD per million output tokens.
        typical_latency_ms: Typical end-to-end latency.
    """

    model_config = {"frozen": True}

    provider: Provider
    model_id: str
    display_name: str
    is_deep_research: bool = False
    cost_tier: CostTier
    input_price_per_m: float | None = None
    output_price_per_m: float | None = None
    typical_latency_ms: int | None = None


class Usage(BaseModel):
    """Token usage of one query, optionally priced."""

    model_config = {"frozen": True}

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float | None = None


class Citation(BaseModel):
    """A source referenced by a model answer."""

    model_config = {"frozen": True}

    url: str
    title: str | None = None
    snippet: str | None = None


# ---------------------------------------------------------------------------
# Tagged query outcome
# ---------------------------------------------------------------------------


class ErrorCategory(StrEnum):
    """Fixed set of failure categories surfaced to callers."""

    PERMISSION_DENIED = "permission_denied"
    AUTHENTICATION = "authentication"
    UNVERIFIED_ORGANIZATION = "unverified_organization"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    INVALID_REQUEST = "invalid_request"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"
    JOB_EXPIRED = "job_expired"
    TIMEOUT = "timeout"
    DISCONNECTED = "disconnected"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class Ok(BaseModel):
    """Successful query outcome."""

    model_config = {"frozen": True}

    kind: Literal["ok"] = "ok"
    content: str = ""
    usage: Usage | None = None


class Err(BaseModel):
    """Failed query outcome.

    Args:
        category: Normalized failure category.
        message: Human-readable description.
        partial_content: Output received before the failure, if any.
    """

    model_config = {"frozen": True}

    kind: Literal["err"] = "err"
    category: ErrorCategory
    message: str
    partial_content: str = ""


Outcome = Annotated[Ok | Err, Field(discriminator="kind")]


class ModelResponse(BaseModel):
    """Result of one query attempt against one model.

    Args:
        model: The model that was queried.
        result: ``Ok`` with content and usage, or ``Err`` with a category.
        job_id: Provider-assigned job id, used for recovery.
        reasoning: Chain-of-thought text for reasoning models.
        citations: Sources referenced by the answer.
        duration_ms: Wall-clock duration of the attempt.
    """

    model_config = {"frozen": True}

    model: Model
    result: Outcome
    job_id: str | None = None
    reasoning: str | None = None
    citations: list[Citation] = Field(default_factory=list)
    duration_ms: int = 0

    @classmethod
    def success(
        cls,
        model: Model,
        content: str,
        *,
        usage: Usage | None = None,
        duration_ms: int = 0,
        job_id: str | None = None,
        reasoning: str | None = None,
        citations: list[Citation] | None = None,
    ) -> ModelResponse:
        return cls(
            model=model,
            result=Ok(content=content, usage=usage),
            job_id=job_id,
            reasoning=reasoning,
            citations=citations or [],
            duration_ms=duration_ms,
        )

    @classmethod
    def failure(
        cls,
        model: Model,
        category: ErrorCategory,
        message: str,
        *,
        partial_content: str = "",
        duration_ms: int = 0,
        job_id: str | None = None,
    ) -> ModelResponse:
        return cls(
            model=model,
            result=Err(category=category, message=message, partial_content=partial_content),
            job_id=job_id,
            duration_ms=duration_ms,
        )

    @property
    def ok(self) -> bool:
        return isinstance(self.result, Ok)

    @property
    def content(self) -> str:
        """Answer text, or the partial output of a failed attempt."""
        if isinstance(self.result, Ok):
            return self.result.content
        return self.result.partial_content

    @property
    def usage(self) -> Usage | None:
        if isinstance(self.result, Ok):
            return self.result.usage
        return None

    @property
    def error(self) -> str | None:
        if isinstance(self.result, Err):
            return self.result.message
        return None

    @property
    def error_category(self) -> ErrorCategory | None:
        if isinstance(self.result, Err):
            return self.result.category
        return None


class ConsensusResult(BaseModel):
    """Aggregate of a multi-model fan-out.

    ``responses`` holds exactly one entry per dispatched model; failures
    are ``Err`` entries, never dropped.
    """

    model_config = {"frozen": True}

    level: ThinkingLevel
    question: str
    responses: list[ModelResponse]
    synthesis: str | None = None
    agreements: list[str] = Field(default_factory=list)
    disagreements: list[str] = Field(default_factory=list)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    total_cost: float = 0.0
    total_duration_ms: int = 0
