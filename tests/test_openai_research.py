"""Tests for the OpenAI deep-research client (Responses API)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from quorum.checkpoint import FileCheckpointStore
from quorum.research import ProviderError, ResearchTransportError, research_client_registry
from quorum.research.openai import (
    OpenAIResearchClient,
    _extract_citations,
    _extract_error,
    _extract_text,
    _parse_event,
    _snapshot,
)
from quorum.types import ErrorCategory, Model

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text_part(text: str, annotations: list[Any] | None = None) -> SimpleNamespace:
    return SimpleNamespace(type="output_text", text=text, annotations=annotations or [])


def _response(
    *,
    status: str = "completed",
    texts: tuple[str, ...] = (),
    response_id: str = "resp_1",
    usage: Any = None,
    error: Any = None,
    incomplete_details: Any = None,
    annotations: list[Any] | None = None,
) -> SimpleNamespace:
    output: list[Any] = [SimpleNamespace(type="web_search_call", content=None)]
    if texts:
        parts = [_text_part(t) for t in texts]
        if annotations:
            parts[-1].annotations = annotations
        output.append(SimpleNamespace(type="message", content=parts))
    return SimpleNamespace(
        id=response_id,
        status=status,
        output=output,
        usage=usage,
        error=error,
        incomplete_details=incomplete_details,
    )


def _usage(input_tokens: int = 100, output_tokens: int = 50) -> SimpleNamespace:
    return SimpleNamespace(
        input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens
    )


def _event(kind: str, **fields: Any) -> SimpleNamespace:
    return SimpleNamespace(type=kind, **fields)


async def _aiter(items: list[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


def _client(store: FileCheckpointStore | None = None, **kwargs: Any) -> OpenAIResearchClient:
    kwargs.setdefault("poll_interval", 0.001)
    kwargs.setdefault("max_poll_attempts", 3)
    client = OpenAIResearchClient("sk-test", store, **kwargs)
    client._client = MagicMock()
    client._client.responses.create = AsyncMock()
    client._client.responses.retrieve = AsyncMock()
    return client


def _status_error(cls: type[openai.APIStatusError], status: int, code: str | None = None) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    response = httpx.Response(status, request=request)
    body = {"message": "boom", "code": code} if code else None
    return cls("boom", response=response, body=body)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    def test_extract_text_joins_message_parts(self) -> None:
        assert _extract_text(_response(texts=("Hello, ", "world"))) == "Hello, world"

    def test_extract_text_empty(self) -> None:
        assert _extract_text(_response(status="queued")) == ""

    def test_citations_deduplicated(self) -> None:
        ann = [
            SimpleNamespace(type="url_citation", url="https://a.example", title="A"),
            SimpleNamespace(type="url_citation", url="https://a.example", title="A again"),
            SimpleNamespace(type="file_citation", url=None),
        ]
        citations = _extract_citations(_response(texts=("x",), annotations=ann))
        assert [(c.url, c.title) for c in citations] == [("https://a.example", "A")]

    def test_extract_error_incomplete(self) -> None:
        resp = _response(status="incomplete", incomplete_details=SimpleNamespace(reason="max_output_tokens"))
        assert _extract_error(resp) == "Response incomplete: max_output_tokens"

    def test_snapshot(self) -> None:
        snap = _snapshot(_response(texts=("report",), usage=_usage()))
        assert snap.job_id == "resp_1"
        assert snap.status == "completed"
        assert snap.content == "report"
        assert snap.usage is not None and snap.usage.total_tokens == 150

    def test_snapshot_incomplete_is_failed(self) -> None:
        snap = _snapshot(_response(status="incomplete"))
        assert snap.status == "failed"


class TestParseEvent:
    def test_created_carries_job_id(self) -> None:
        event = _parse_event(_event("response.created", sequence_number=0, response=_response(status="queued")))
        assert event is not None
        assert event.kind == "delta" and event.job_id == "resp_1" and event.text == ""

    def test_text_delta(self) -> None:
        event = _parse_event(_event("response.output_text.delta", delta="Hi", sequence_number=4))
        assert event is not None
        assert (event.kind, event.text, event.sequence) == ("delta", "Hi", 4)

    def test_completed(self) -> None:
        event = _parse_event(
            _event("response.completed", response=_response(texts=("full",), usage=_usage()))
        )
        assert event is not None
        assert event.kind == "completed"
        assert event.content == "full"
        assert event.usage is not None

    def test_failed(self) -> None:
        event = _parse_event(
            _event("response.failed", response=_response(status="failed", error=SimpleNamespace(message="bad")))
        )
        assert event is not None
        assert event.kind == "failed" and event.error == "bad"

    def test_error(self) -> None:
        event = _parse_event(_event("error", message="overloaded"))
        assert event is not None and event.kind == "error" and event.error == "overloaded"

    def test_ignored(self) -> None:
        assert _parse_event(_event("response.web_search_call.searching")) is None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestOpenAIResearchClient:
    def test_registered(self) -> None:
        assert research_client_registry.get("openai") is OpenAIResearchClient

    async def test_submit_uses_background_mode(self, deep_model: Model) -> None:
        client = _client()
        client._client.responses.create.return_value = _response(status="queued")

        snap = await client.submit("prompt", deep_model)

        assert snap.status == "queued"
        kwargs = client._client.responses.create.call_args.kwargs
        assert kwargs["model"] == "o3-deep-research-2025-06-26"
        assert kwargs["background"] is True
        assert kwargs["tools"] == [{"type": "web_search_preview"}]
        assert "stream" not in kwargs

    async def test_query_polls_to_completion(self, store: FileCheckpointStore, deep_model: Model) -> None:
        client = _client(store)
        client._client.responses.create.return_value = _response(status="queued")
        client._client.responses.retrieve.side_effect = [
            _response(status="in_progress"),
            _response(texts=("report",), usage=_usage()),
        ]

        resp = await client.query("topic", deep_model)

        assert resp.ok and resp.content == "report"
        client._client.responses.retrieve.assert_awaited_with("resp_1")
        assert await store.list() == []

    async def test_streaming_query(self, store: FileCheckpointStore, deep_model: Model) -> None:
        client = _client(store)
        client._client.responses.create.return_value = _aiter(
            [
                _event("response.created", sequence_number=0, response=_response(status="queued")),
                _event("response.output_text.delta", delta="AB", sequence_number=1),
                _event("response.output_text.delta", delta="CD", sequence_number=2),
                _event("response.completed", sequence_number=3, response=_response(texts=("ABCD",))),
            ]
        )
        tokens: list[str] = []

        resp = await client.query("topic", deep_model, stream=True, on_token=tokens.append)

        assert resp.ok and resp.content == "ABCD"
        assert tokens == ["AB", "CD"]
        assert client._client.responses.create.call_args.kwargs["stream"] is True

    async def test_server_error_is_transport(self, deep_model: Model) -> None:
        client = _client()
        client._client.responses.retrieve.side_effect = _status_error(openai.InternalServerError, 503)
        with pytest.raises(ResearchTransportError):
            await client.retrieve("resp_1")

    async def test_status_error_is_provider_error(self, deep_model: Model) -> None:
        client = _client()
        client._client.responses.create.side_effect = _status_error(
            openai.RateLimitError, 429, code="insufficient_quota"
        )
        with pytest.raises(ProviderError) as info:
            await client.submit("prompt", deep_model)
        assert info.value.status_code == 429
        assert info.value.code == "insufficient_quota"

    async def test_quota_error_categorized(self, deep_model: Model) -> None:
        client = _client()
        client._client.responses.create.side_effect = _status_error(
            openai.RateLimitError, 429, code="insufficient_quota"
        )
        resp = await client.query("topic", deep_model)
        assert resp.error_category is ErrorCategory.QUOTA_EXHAUSTED

    async def test_connection_error_is_transport(self, deep_model: Model) -> None:
        client = _client()
        client._client.responses.retrieve.side_effect = openai.APIConnectionError(
            request=httpx.Request("GET", "https://api.openai.com/v1/responses/resp_1")
        )
        with pytest.raises(ResearchTransportError):
            await client.retrieve("resp_1")

    async def test_aclose(self) -> None:
        client = _client()
        client._client.close = AsyncMock()
        await client.aclose()
        client._client.close.assert_awaited_once()
