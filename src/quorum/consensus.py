"""Multi-model consensus: concurrent fan-out plus a synthesis step.

Every selected model is queried concurrently through the ``Orchestrator``.
Individual failures stay in ``ConsensusResult.responses`` as failed entries.
Synthesis asks a cheap model to merge the answers into JSON and degrades to
plain concatenation whenever that does not work out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from quorum.catalog import models_for_level, synthesis_model
from quorum.orchestrator import Orchestrator
from quorum.types import ConfigurationError, ConsensusResult, Model, ModelResponse, ThinkingLevel

_log = logging.getLogger(__name__)

SEPARATOR = "\n\n---\n\n"
NEUTRAL_CONFIDENCE = 0.5

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SYNTHESIS_PROMPT = """\
You are synthesizing responses from multiple AI models to the following question:

**Question:** {question}

**Model Responses:**
{responses}

Please provide:
1. **SYNTHESIS**: A unified answer that incorporates the best insights from all models
2. **AGREEMENTS**: Key points where models agree (bullet list)
3. **DISAGREEMENTS**: Points where models disagree or provide different information (bullet list)
4. **CONFIDENCE**: A confidence score from 0-100 based on model agreement and quality of responses

Format your response as JSON:
{{
  "synthesis": "...",
  "agreements": ["...", "..."],
  "disagreements": ["...", "..."],
  "confidence": 85
}}"""

DEEP_CONSENSUS_PROMPT = """\
Conduct thorough research on the following question. Provide comprehensive analysis with sources where possible.

{question}

Please include:
- Detailed analysis
- Multiple perspectives
- Recent developments
- Cited sources (if available)
- Confidence in your findings"""

ModelCompleteCallback = Callable[[ModelResponse], None]


class Synthesis(BaseModel):
    """Merged view of several answers."""

    synthesis: str = ""
    agreements: list[str] = Field(default_factory=list)
    disagreements: list[str] = Field(default_factory=list)
    confidence: float = NEUTRAL_CONFIDENCE


class _SynthesisPayload(BaseModel):
    synthesis: str = ""
    agreements: list[str] = Field(default_factory=list)
    disagreements: list[str] = Field(default_factory=list)
    confidence: float | None = None


def parse_synthesis(text: str) -> Synthesis | None:
    """Extract the first ``{...}`` block of *text* as a synthesis, or ``None``."""
    match = _JSON_OBJECT.search(text)
    if match is None:
        return None
    try:
        payload = _SynthesisPayload.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError):
        return None
    confidence = (payload.confidence if payload.confidence else 50) / 100
    return Synthesis(
        synthesis=payload.synthesis,
        agreements=payload.agreements,
        disagreements=payload.disagreements,
        confidence=min(max(confidence, 0.0), 1.0),
    )


def concatenate(responses: Sequence[ModelResponse]) -> Synthesis:
    """Fallback synthesis: successful answers joined with a separator, neutral confidence.

    Partial output from failed models is left out. When nothing succeeded the
    error messages stand in.
    """
    contents = [r.content for r in responses if r.ok and r.content]
    if not contents:
        contents = [f"{r.model.display_name}: {r.error}" for r in responses if r.error]
    return Synthesis(synthesis=SEPARATOR.join(contents), confidence=NEUTRAL_CONFIDENCE)


class ConsensusEngine:
    """Fans one question out to several models and merges the answers.

    Args:
        orchestrator: Routes each query and supplies availability.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator

    def select_models(
        self,
        level: ThinkingLevel = "consensus",
        models: Sequence[Model] | None = None,
        model_ids: Sequence[str] | None = None,
    ) -> list[Model]:
        """Resolve and availability-filter the models for a consensus run.

        Raises:
            ConfigurationError: Unknown id, or nothing available.
        """
        if models is not None:
            selected = list(models)
        elif model_ids is not None:
            selected = [self.orchestrator.get_model(model_id) for model_id in model_ids]
        else:
            selected = models_for_level(level, self.orchestrator.available_models())
        available = [m for m in selected if self.orchestrator.is_available(m.provider)]
        if not available:
            raise ConfigurationError("No models available for consensus (check API keys)")
        return available

    async def consensus(
        self,
        question: str,
        *,
        level: ThinkingLevel = "consensus",
        models: Sequence[Model] | None = None,
        model_ids: Sequence[str] | None = None,
        synthesize: bool = True,
        on_model_complete: ModelCompleteCallback | None = None,
    ) -> ConsensusResult:
        """Ask every selected model and merge the answers.

        Raises:
            ConfigurationError: If no model is available. Nothing else raises;
                failed models appear as failed responses.
        """
        selected = self.select_models(level, models, model_ids)
        return await self._run(question, selected, level, synthesize, on_model_complete, lambda _: question)

    async def deep_consensus(
        self, question: str, *, on_model_complete: ModelCompleteCallback | None = None
    ) -> ConsensusResult:
        """Consensus across every available deep-research model.

        Research clients build their own research prompt from the question;
        deep models served by the chat path get an equivalent one here.

        Raises:
            ConfigurationError: If no deep-research model is available.
        """
        deep = [
            m for m in self.orchestrator.models
            if m.is_deep_research and self.orchestrator.is_available(m.provider)
        ]
        if not deep:
            raise ConfigurationError("No deep research models available")

        def prompt_for(model: Model) -> str:
            if self.orchestrator.routes_to_research(model):
                return question
            return DEEP_CONSENSUS_PROMPT.format(question=question)

        return await self._run(question, deep, "deep", True, on_model_complete, prompt_for)

    async def _run(
        self,
        question: str,
        models: list[Model],
        level: ThinkingLevel,
        synthesize: bool,
        on_model_complete: ModelCompleteCallback | None,
        prompt_for: Callable[[Model], str],
    ) -> ConsensusResult:
        started = time.monotonic()
        _log.info("consensus: %d model(s): %s", len(models), ", ".join(m.model_id for m in models))

        async def one(model: Model) -> ModelResponse:
            response = await self.orchestrator.query_model(prompt_for(model), model)
            if on_model_complete is not None:
                on_model_complete(response)
            return response

        responses = list(await asyncio.gather(*(one(m) for m in models)))
        failed = sum(not r.ok for r in responses)
        if failed:
            _log.warning("consensus: %d of %d model(s) failed", failed, len(responses))

        merged: Synthesis | None = None
        if len(responses) == 1:
            merged = Synthesis(synthesis=responses[0].content, confidence=1.0)
        elif synthesize:
            merged = await self.synthesize(question, responses)

        total_cost = sum((r.usage.estimated_cost or 0.0) for r in responses if r.usage is not None)
        extra: dict[str, Any] = {}
        if merged is not None:
            extra = merged.model_dump()
        return ConsensusResult(
            level=level,
            question=question,
            responses=responses,
            total_cost=total_cost,
            total_duration_ms=int((time.monotonic() - started) * 1000),
            **extra,
        )

    async def synthesize(self, question: str, responses: Sequence[ModelResponse]) -> Synthesis:
        """Merge *responses* with a cheap model; never raises."""
        model = synthesis_model(self.orchestrator.is_available)
        if model is None:
            _log.info("no synthesis model available; concatenating answers")
            return concatenate(responses)

        answered = [r for r in responses if r.ok and r.content]
        formatted = "\n\n".join(
            f"### Model {i}: {r.model.display_name}\n{r.content}" for i, r in enumerate(answered, 1)
        )
        prompt = SYNTHESIS_PROMPT.format(question=question, responses=formatted)
        result = await self.orchestrator.query_model(prompt, model)
        if not result.ok:
            _log.warning("synthesis with %s failed: %s", model.model_id, result.error)
            return concatenate(responses)
        parsed = parse_synthesis(result.content)
        if parsed is None:
            _log.warning("synthesis with %s returned no parseable JSON", model.model_id)
            return concatenate(responses)
        return parsed


__all__ = [
    "ConsensusEngine",
    "Synthesis",
    "concatenate",
    "parse_synthesis",
]
