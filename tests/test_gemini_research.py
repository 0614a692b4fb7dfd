"""Tests for the Gemini deep-research client (Interactions API over httpx)."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from conftest import model

from quorum.checkpoint import FileCheckpointStore
from quorum.research import ProviderError, ResearchTransportError, research_client_registry
from quorum.research.gemini import (
    BASE_URL,
    GeminiResearchClient,
    _extract_text,
    _extract_usage,
    _parse_event,
    _snapshot,
)
from quorum.types import ErrorCategory

AGENT = model("deep-research-pro-preview-12-2025")

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, store: FileCheckpointStore | None = None, **kwargs: Any) -> GeminiResearchClient:
    kwargs.setdefault("poll_interval", 0.001)
    kwargs.setdefault("max_poll_attempts", 3)
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return GeminiResearchClient("g-key", store, http_client=http, **kwargs)


def _sse(*payloads: dict[str, Any]) -> bytes:
    return "".join(f"data: {json.dumps(p)}\n\n" for p in payloads).encode()


def _interaction(status: str, text: str = "", **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"id": "int_1", "status": status}
    if text:
        body["outputs"] = [{"type": "thought", "text": "thinking"}, {"type": "text", "text": text}]
    body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    def test_last_output_is_report(self) -> None:
        assert _extract_text(_interaction("completed", "report")) == "report"

    def test_nested_interaction(self) -> None:
        snap = _snapshot({"interaction": _interaction("in_progress")})
        assert snap.job_id == "int_1"
        assert snap.status == "in_progress"

    def test_usage_metadata_shape(self) -> None:
        usage = _extract_usage(
            {"usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 20, "totalTokenCount": 30}}
        )
        assert usage is not None and usage.total_tokens == 30

    def test_usage_totals_shape(self) -> None:
        usage = _extract_usage({"usage": {"total_input_tokens": 4, "total_output_tokens": 6}})
        assert usage is not None
        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (4, 6, 10)

    def test_snapshot_without_id(self) -> None:
        with pytest.raises(ProviderError, match="No interaction id"):
            _snapshot({"status": "completed"})


class TestParseEvent:
    def test_start_carries_id(self) -> None:
        event = _parse_event({"event_type": "interaction.start", "interaction": {"id": "int_1"}})
        assert event is not None and event.kind == "delta" and event.job_id == "int_1"

    def test_content_delta(self) -> None:
        event = _parse_event({"event_type": "content.delta", "delta": {"type": "text", "text": "Hi"}})
        assert event is not None and event.text == "Hi"

    def test_complete(self) -> None:
        event = _parse_event({"event_type": "interaction.complete", "interaction": _interaction("completed", "R")})
        assert event is not None and event.kind == "completed" and event.content == "R"

    def test_status_failed(self) -> None:
        event = _parse_event(
            {"event_type": "interaction.status_update", "interaction": _interaction("failed", error={"message": "x"})}
        )
        assert event is not None and event.kind == "failed" and event.error == "x"

    def test_error(self) -> None:
        event = _parse_event({"event_type": "error", "error": {"message": "overloaded"}})
        assert event is not None and event.kind == "error" and event.error == "overloaded"

    def test_irrelevant(self) -> None:
        assert _parse_event({"event_type": "content.start"}) is None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestGeminiResearchClient:
    def test_registered(self) -> None:
        assert research_client_registry.get("google") is GeminiResearchClient

    async def test_submit_request_shape(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_interaction("in_progress"))

        client = _client(handler)
        snap = await client.submit("prompt", AGENT)

        assert snap.job_id == "int_1"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1beta/interactions"
        assert request.headers["x-goog-api-key"] == "g-key"
        assert "key=" not in str(request.url)
        assert json.loads(request.content) == {
            "input": "prompt",
            "agent": "deep-research-pro-preview-12-2025",
            "background": True,
        }

    async def test_query_polls(self, store: FileCheckpointStore) -> None:
        polls = iter([_interaction("in_progress"), _interaction("completed", "final report")])

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json=_interaction("in_progress"))
            assert request.url.path == "/v1beta/interactions/int_1"
            return httpx.Response(200, json=next(polls))

        client = _client(handler, store)
        resp = await client.query("topic", AGENT)

        assert resp.ok and resp.content == "final report"
        assert await store.list() == []

    async def test_streaming_with_recovery(self, store: FileCheckpointStore) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                assert request.url.params["alt"] == "sse"
                body = _sse(
                    {"event_type": "interaction.start", "interaction": {"id": "int_1", "status": "in_progress"}},
                    {"event_type": "content.delta", "delta": {"type": "text", "text": "AB"}},
                )
                return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})
            return httpx.Response(200, json=_interaction("completed", "ABCDE"))

        client = _client(handler, store)
        tokens: list[str] = []

        resp = await client.query("topic", AGENT, stream=True, on_token=tokens.append)

        assert resp.ok and resp.content == "ABCDE"
        assert tokens == ["AB", "CDE"]

    async def test_client_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": {"code": 403, "status": "PERMISSION_DENIED", "message": "no"}})

        with pytest.raises(ProviderError) as info:
            await _client(handler).submit("prompt", AGENT)
        assert info.value.status_code == 403
        assert info.value.code == "PERMISSION_DENIED"

    async def test_client_error_categorized(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"status": "UNAUTHENTICATED"}})

        resp = await _client(handler).query("topic", AGENT)
        assert resp.error_category is ErrorCategory.AUTHENTICATION
        assert resp.error is not None and "GOOGLE_GENERATIVE_AI_API_KEY" in resp.error

    async def test_server_error_is_transport(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        with pytest.raises(ResearchTransportError):
            await _client(handler).retrieve("int_1")

    async def test_connect_error_is_transport(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ResearchTransportError, match="ConnectError"):
            await _client(handler).retrieve("int_1")

    async def test_poll_retries_server_errors(self, store: FileCheckpointStore) -> None:
        polls = iter(
            [httpx.Response(500, text="oops"), httpx.Response(200, json=_interaction("completed", "done"))]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json=_interaction("queued"))
            return next(polls)

        resp = await _client(handler, store).query("topic", AGENT)
        assert resp.ok and resp.content == "done"

    async def test_html_body_is_transport(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy hiccup</html>", headers={"content-type": "text/html"})

        with pytest.raises(ResearchTransportError, match="non-JSON"):
            await _client(handler).retrieve("int_1")

    async def test_non_object_body_is_transport(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["int_1"])

        with pytest.raises(ResearchTransportError, match="expected an object"):
            await _client(handler).submit("prompt", AGENT)

    async def test_poll_survives_html_body(self, store: FileCheckpointStore) -> None:
        polls = iter(
            [
                httpx.Response(200, text="<html>proxy hiccup</html>", headers={"content-type": "text/html"}),
                httpx.Response(200, json=_interaction("completed", "done")),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json=_interaction("in_progress"))
            return next(polls)

        resp = await _client(handler, store).query("topic", AGENT)

        assert resp.ok and resp.content == "done"
        assert await store.list() == []

    async def test_aclose(self) -> None:
        client = _client(lambda request: httpx.Response(200))
        await client.aclose()
        assert client._http.is_closed
