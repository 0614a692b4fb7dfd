"""Gemini deep research over the Interactions API.

The deep-research agent is not reachable through ``generate_content``, so
this client talks REST directly with ``httpx``: ``POST /interactions`` with
``background: true`` starts a job (``alt=sse`` streams it) and
``GET /interactions/{id}`` retrieves it.

Interaction events are parsed leniently since the preview API has shipped
several shapes: the id may sit at the top level or under ``interaction``, the
event type under ``event_type`` or ``type``, and usage under
``usageMetadata`` or ``usage``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from quorum.checkpoint import CheckpointStore
from quorum.research.base import ResearchClient, research_client_registry
from quorum.research.errors import ProviderError, ResearchTransportError
from quorum.research.sse import iter_json_events
from quorum.research.types import JobSnapshot, JobStatus, StreamEvent
from quorum.types import Model, Usage

_log = logging.getLogger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta/"

_COMPLETE_EVENTS = frozenset({"interaction.complete", "interaction.completed"})
_FAILED_STATUSES = frozenset({JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.EXPIRED})


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _interaction(payload: dict[str, Any]) -> dict[str, Any]:
    nested = payload.get("interaction")
    return nested if isinstance(nested, dict) else payload


def _extract_id(payload: dict[str, Any]) -> str | None:
    job_id = payload.get("id") or _interaction(payload).get("id")
    return str(job_id) if job_id else None


def _extract_text(payload: dict[str, Any]) -> str:
    """Text of the last output; the final report is always the last one."""
    outputs = _interaction(payload).get("outputs") or []
    if not outputs:
        return ""
    last = outputs[-1]
    return (last.get("text") if isinstance(last, dict) else None) or ""


def _extract_usage(payload: dict[str, Any]) -> Usage | None:
    body = _interaction(payload)
    meta = body.get("usageMetadata")
    if isinstance(meta, dict):
        return Usage(
            input_tokens=meta.get("promptTokenCount", 0) or 0,
            output_tokens=meta.get("candidatesTokenCount", 0) or 0,
            total_tokens=meta.get("totalTokenCount", 0) or 0,
        )
    usage = body.get("usage")
    if isinstance(usage, dict):
        input_tokens = usage.get("total_input_tokens", usage.get("input_tokens", 0)) or 0
        output_tokens = usage.get("total_output_tokens", usage.get("output_tokens", 0)) or 0
        return Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage.get("total_tokens", 0) or input_tokens + output_tokens,
        )
    return None


def _extract_error(payload: dict[str, Any]) -> str | None:
    error = _interaction(payload).get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return str(error) if error else None


def _extract_delta(payload: dict[str, Any]) -> str:
    delta = payload.get("delta")
    if isinstance(delta, dict):
        return delta.get("text") or ""
    if isinstance(delta, str):
        return delta
    return payload.get("text") or ""


def _snapshot(payload: dict[str, Any]) -> JobSnapshot:
    job_id = _extract_id(payload)
    if job_id is None:
        raise ProviderError("No interaction id in response", provider="google")
    return JobSnapshot(
        job_id=job_id,
        status=str(JobStatus.parse(_interaction(payload).get("status"))),
        content=_extract_text(payload),
        usage=_extract_usage(payload),
        error=_extract_error(payload),
    )


def _parse_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Map one interaction SSE payload onto a ``StreamEvent``."""
    kind = payload.get("event_type") or payload.get("type") or ""
    job_id = _extract_id(payload)
    raw_status = _interaction(payload).get("status")
    status = JobStatus.parse(raw_status) if raw_status else None
    sequence = payload.get("sequence_number")
    sequence = sequence if isinstance(sequence, int) else None

    if kind in _COMPLETE_EVENTS or status == JobStatus.COMPLETED:
        return StreamEvent(
            kind="completed",
            job_id=job_id,
            sequence=sequence,
            content=_extract_text(payload) or None,
            usage=_extract_usage(payload),
        )
    if status in _FAILED_STATUSES or kind == "interaction.failed":
        return StreamEvent(
            kind="failed", job_id=job_id, sequence=sequence, error=_extract_error(payload) or "Research failed"
        )
    if kind == "error":
        return StreamEvent(kind="error", job_id=job_id, error=_extract_error(payload) or "stream error")
    text = _extract_delta(payload) if kind == "content.delta" or "delta" in payload else ""
    if text or job_id:
        return StreamEvent(kind="delta", text=text, job_id=job_id, sequence=sequence)
    return None


async def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    if response.status_code >= 500:
        raise ResearchTransportError(f"Gemini API unavailable ({response.status_code}): {body[:200]}")
    code: str | None = None
    try:
        decoded = response.json()
    except ValueError:
        decoded = None
    if isinstance(decoded, dict) and isinstance(decoded.get("error"), dict):
        status = decoded["error"].get("status")
        code = status if isinstance(status, str) else None
    raise ProviderError(
        f"Gemini API error ({response.status_code}): {body[:500]}",
        status_code=response.status_code,
        code=code,
        provider="google",
    )


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except httpx.TransportError as exc:
        _log.warning("gemini %s transport error: %s", action, exc)
        raise ResearchTransportError(f"{type(exc).__name__}: {exc}") from exc


def _decode(response: httpx.Response) -> dict[str, Any]:
    """Decode a 2xx body; a proxy page in place of JSON counts as a transport fault."""
    try:
        payload = response.json()
    except ValueError as exc:
        _log.warning("gemini returned a non-JSON body (%d bytes)", len(response.content))
        raise ResearchTransportError(f"Gemini API returned a non-JSON body: {response.text[:200]}") from exc
    if not isinstance(payload, dict):
        raise ResearchTransportError(f"Gemini API returned {type(payload).__name__}, expected an object")
    return payload


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GeminiResearchClient(ResearchClient):
    """Deep research against Gemini's Interactions API.

    The API key travels in the ``x-goog-api-key`` header, never in the URL.

    Args:
        api_key: Google Generative AI API key.
        checkpoints: Store for in-flight job records.
        base_url: API root, ending in ``/``.
        timeout: Per-request timeout; streaming reads are not capped.
        http_client: Pre-built ``httpx.AsyncClient``, mainly for tests.
        **kwargs: Lifecycle options forwarded to ``ResearchClient``.
    """

    provider = "google"

    def __init__(
        self,
        api_key: str,
        checkpoints: CheckpointStore | None = None,
        *,
        base_url: str = BASE_URL,
        timeout: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.pop("max_retries", None)
        super().__init__(api_key, checkpoints, **kwargs)
        self._timeout = timeout
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"x-goog-api-key": api_key}

    @staticmethod
    def _body(prompt: str, model: Model) -> dict[str, Any]:
        return {"input": prompt, "agent": model.model_id, "background": True}

    async def submit(self, prompt: str, model: Model) -> JobSnapshot:
        _log.debug("gemini research submit: agent=%s, prompt_chars=%d", model.model_id, len(prompt))
        with _translate_errors("submit"):
            response = await self._http.post("interactions", json=self._body(prompt, model), headers=self._headers)
            await _raise_for_status(response)
        return _snapshot(_decode(response))

    async def submit_stream(self, prompt: str, model: Model) -> AsyncIterator[StreamEvent]:
        _log.debug("gemini research stream: agent=%s, prompt_chars=%d", model.model_id, len(prompt))
        timeout = httpx.Timeout(self._timeout, read=None)
        with _translate_errors("stream"):
            async with self._http.stream(
                "POST",
                "interactions",
                params={"alt": "sse"},
                json=self._body(prompt, model),
                headers=self._headers,
                timeout=timeout,
            ) as response:
                await _raise_for_status(response)
                async for payload in iter_json_events(response.aiter_lines()):
                    event = _parse_event(payload)
                    if event is not None:
                        yield event

    async def retrieve(self, job_id: str) -> JobSnapshot:
        with _translate_errors("retrieve"):
            response = await self._http.get(f"interactions/{job_id}", headers=self._headers)
            await _raise_for_status(response)
        return _snapshot(_decode(response))

    async def aclose(self) -> None:
        await self._http.aclose()


research_client_registry.register("google", GeminiResearchClient)
