"""OpenAI deep research over the Responses API.

Jobs are submitted with ``background=True`` and the ``web_search_preview``
tool, which deep-research models require. Streaming uses the same call with
``stream=True``; ``responses.retrieve`` serves the poll loop.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from typing import Any

import openai
from openai import AsyncOpenAI

from quorum.checkpoint import CheckpointStore
from quorum.research.base import ResearchClient, research_client_registry
from quorum.research.errors import ProviderError, ResearchTransportError
from quorum.research.types import JobSnapshot, JobStatus, StreamEvent
from quorum.types import Citation, Model, Usage

_log = logging.getLogger(__name__)

_TOOLS: list[dict[str, Any]] = [{"type": "web_search_preview"}]

# Stream events that announce the response object, and with it the job id.
_LIFECYCLE_EVENTS = frozenset({"response.created", "response.queued", "response.in_progress"})


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _extract_text(response: Any) -> str:
    """Concatenate every ``output_text`` part of every message output item."""
    parts: list[str] = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for content in getattr(item, "content", None) or []:
            if getattr(content, "type", None) == "output_text":
                parts.append(getattr(content, "text", "") or "")
    return "".join(parts)


def _extract_citations(response: Any) -> list[Citation]:
    citations: list[Citation] = []
    seen: set[str] = set()
    for item in getattr(response, "output", None) or []:
        for content in getattr(item, "content", None) or []:
            for ann in getattr(content, "annotations", None) or []:
                url = getattr(ann, "url", None)
                if getattr(ann, "type", None) == "url_citation" and url and url not in seen:
                    seen.add(url)
                    citations.append(Citation(url=url, title=getattr(ann, "title", None)))
    return citations


def _extract_usage(response: Any) -> Usage | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    input_tokens = getattr(usage, "input_tokens", 0) or 0
    output_tokens = getattr(usage, "output_tokens", 0) or 0
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=getattr(usage, "total_tokens", 0) or input_tokens + output_tokens,
    )


def _extract_error(response: Any) -> str | None:
    error = getattr(response, "error", None)
    if error is not None:
        return getattr(error, "message", None) or str(error)
    details = getattr(response, "incomplete_details", None)
    if details is not None:
        return f"Response incomplete: {getattr(details, 'reason', None) or 'unknown reason'}"
    return None


def _snapshot(response: Any) -> JobSnapshot:
    status = JobStatus.parse(getattr(response, "status", None))
    return JobSnapshot(
        job_id=response.id,
        status=str(status),
        content=_extract_text(response),
        usage=_extract_usage(response),
        error=_extract_error(response),
        citations=_extract_citations(response),
    )


@contextmanager
def _translate_errors(action: str, model_id: str) -> Iterator[None]:
    """Re-raise ``openai`` exceptions as research errors."""
    try:
        yield
    except openai.InternalServerError as exc:
        _log.warning("openai %s server error: model=%s, status=%s", action, model_id, exc.status_code)
        raise ResearchTransportError(f"OpenAI unavailable ({exc.status_code}): {exc}") from exc
    except openai.APIStatusError as exc:
        _log.error("openai %s failed: model=%s, status=%s", action, model_id, exc.status_code)
        raise ProviderError(
            str(exc), status_code=exc.status_code, code=exc.code, provider="openai"
        ) from exc
    except openai.APIConnectionError as exc:
        _log.warning("openai %s connection error: model=%s, error=%s", action, model_id, exc)
        raise ResearchTransportError(str(exc)) from exc
    except openai.APIError as exc:
        _log.error("openai %s failed: model=%s, error=%s", action, model_id, exc, exc_info=True)
        raise ProviderError(str(exc), code=exc.code, provider="openai") from exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OpenAIResearchClient(ResearchClient):
    """Deep research against OpenAI's Responses API.

    Args:
        api_key: OpenAI API key.
        checkpoints: Store for in-flight job records.
        base_url: Custom API base URL.
        max_retries: SDK-level retries for each request.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``AsyncOpenAI`` client, mainly for tests.
        **kwargs: Lifecycle options forwarded to ``ResearchClient``.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: str,
        checkpoints: CheckpointStore | None = None,
        *,
        base_url: str | None = None,
        max_retries: int = 2,
        timeout: float = 600.0,
        client: AsyncOpenAI | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, checkpoints, **kwargs)
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    def _request(self, prompt: str, model: Model) -> dict[str, Any]:
        return {
            "model": model.model_id,
            "input": prompt,
            "background": True,
            "tools": _TOOLS,
        }

    async def submit(self, prompt: str, model: Model) -> JobSnapshot:
        _log.debug("openai research submit: model=%s, prompt_chars=%d", model.model_id, len(prompt))
        with _translate_errors("submit", model.model_id):
            response = await self._client.responses.create(**self._request(prompt, model))
        return _snapshot(response)

    async def submit_stream(self, prompt: str, model: Model) -> AsyncIterator[StreamEvent]:
        _log.debug("openai research stream: model=%s, prompt_chars=%d", model.model_id, len(prompt))
        with _translate_errors("stream", model.model_id):
            stream = await self._client.responses.create(**self._request(prompt, model), stream=True)
            async for event in stream:
                parsed = _parse_event(event)
                if parsed is not None:
                    yield parsed

    async def retrieve(self, job_id: str) -> JobSnapshot:
        with _translate_errors("retrieve", job_id):
            response = await self._client.responses.retrieve(job_id)
        return _snapshot(response)

    async def aclose(self) -> None:
        await self._client.close()


def _parse_event(event: Any) -> StreamEvent | None:
    """Map one Responses API stream event onto a ``StreamEvent``."""
    kind = getattr(event, "type", "")
    sequence = getattr(event, "sequence_number", None)
    response = getattr(event, "response", None)
    job_id = getattr(response, "id", None) if response is not None else None

    if kind in _LIFECYCLE_EVENTS:
        return StreamEvent(kind="delta", job_id=job_id, sequence=sequence)
    if kind == "response.output_text.delta":
        return StreamEvent(kind="delta", text=getattr(event, "delta", "") or "", sequence=sequence)
    if kind == "response.completed":
        return StreamEvent(
            kind="completed",
            job_id=job_id,
            sequence=sequence,
            content=_extract_text(response),
            usage=_extract_usage(response),
            citations=_extract_citations(response),
        )
    if kind in ("response.failed", "response.incomplete"):
        return StreamEvent(
            kind="failed",
            job_id=job_id,
            sequence=sequence,
            error=_extract_error(response) or "Research failed",
        )
    if kind == "error":
        return StreamEvent(kind="error", sequence=sequence, error=getattr(event, "message", None) or "stream error")
    return None


research_client_registry.register("openai", OpenAIResearchClient)
