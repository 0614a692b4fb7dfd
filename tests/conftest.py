"""Shared fixtures: scripted research clients and chat providers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

import pytest

from quorum.catalog import get_model
from quorum.chat import ChatChunk, ChatProvider, ChatResult
from quorum.checkpoint import FileCheckpointStore
from quorum.config import ProviderConfig
from quorum.research import JobSnapshot, ResearchClient, StreamEvent
from quorum.types import Model, Usage

Script = Sequence[StreamEvent | Exception | float]
"""Stream script: events are yielded, exceptions raised, floats slept."""


class ScriptedResearchClient(ResearchClient):
    """Research client replaying canned submissions, stream events and snapshots."""

    provider = "openai"

    def __init__(
        self,
        checkpoints: FileCheckpointStore | None = None,
        *,
        submitted: JobSnapshot | Exception | None = None,
        events: Script = (),
        snapshots: Sequence[JobSnapshot | Exception] = (),
        provider: str = "openai",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("poll_interval", 0.001)
        kwargs.setdefault("max_poll_attempts", 5)
        kwargs.setdefault("first_event_timeout", 1.0)
        super().__init__("test-key", checkpoints, **kwargs)
        self.provider = provider  # type: ignore[misc]
        self.submitted = submitted
        self.events = list(events)
        self.snapshots = list(snapshots)
        self.prompts: list[str] = []
        self.retrieved: list[str] = []
        self.closed = False

    async def submit(self, prompt: str, model: Model) -> JobSnapshot:
        self.prompts.append(prompt)
        if isinstance(self.submitted, Exception):
            raise self.submitted
        assert self.submitted is not None
        return self.submitted

    async def submit_stream(self, prompt: str, model: Model) -> AsyncIterator[StreamEvent]:
        self.prompts.append(prompt)
        for item in self.events:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, float):
                await asyncio.sleep(item)
                continue
            yield item

    async def retrieve(self, job_id: str) -> JobSnapshot:
        self.retrieved.append(job_id)
        item = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class ScriptedChatProvider(ChatProvider):
    """Chat provider answering from a model id -> reply (or exception) map."""

    def __init__(
        self,
        replies: dict[str, str | Exception] | None = None,
        *,
        provider: str = "openai",
        delay: float = 0.0,
        usage: Usage | None = None,
    ) -> None:
        super().__init__(ProviderConfig(provider=provider, api_key="test-key"))  # type: ignore[arg-type]
        self.replies = replies or {}
        self.delay = delay
        self.usage = usage
        self.prompts: list[tuple[str, str]] = []
        self.closed = False

    def _reply(self, prompt: str, model_id: str) -> str:
        self.prompts.append((model_id, prompt))
        reply = self.replies.get(model_id, f"answer from {model_id}")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, prompt: str, model_id: str, *, system_prompt: str | None = None) -> ChatResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return ChatResult(content=self._reply(prompt, model_id), usage=self.usage)

    async def stream(
        self, prompt: str, model_id: str, *, system_prompt: str | None = None
    ) -> AsyncIterator[ChatChunk]:
        reply = self._reply(prompt, model_id)
        for i in range(0, len(reply), 4):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield ChatChunk(delta=reply[i : i + 4])
        if self.usage is not None:
            yield ChatChunk(usage=self.usage)

    async def aclose(self) -> None:
        self.closed = True


def snapshot(status: str, content: str = "", *, job_id: str = "job_1", **kwargs: Any) -> JobSnapshot:
    return JobSnapshot(job_id=job_id, status=status, content=content, **kwargs)


def model(model_id: str) -> Model:
    found = get_model(model_id)
    assert found is not None, model_id
    return found


@pytest.fixture
def store(tmp_path: Path) -> FileCheckpointStore:
    return FileCheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def deep_model() -> Model:
    return model("o3-deep-research-2025-06-26")
