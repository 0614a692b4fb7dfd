"""Provider-neutral deep-research query lifecycle.

``ResearchClient`` owns the per-query state machine: submit in background
mode, stream or poll, checkpoint streamed output, fall back to polling when a
stream drops and finally clean up the checkpoint once the job has completed.
Subclasses only speak their provider's wire protocol through ``submit``,
``submit_stream`` and ``retrieve``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import ClassVar

from quorum.catalog import usage_cost
from quorum.checkpoint import CheckpointError, CheckpointHandle, CheckpointStore
from quorum.log import LogContext
from quorum.registry import Registry
from quorum.research.errors import ProviderError, ResearchError, categorize, job_error
from quorum.research.poll import ProgressCallback, poll_job
from quorum.research.types import JobSnapshot, JobStatus, PollResult, StreamEvent
from quorum.types import Citation, Err, ErrorCategory, Model, ModelResponse, Usage

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]

RESEARCH_INSTRUCTIONS = """\
Research the following topic thoroughly. Provide comprehensive information with sources where possible.

Topic: {topic}

Please provide:
1. An overview/summary
2. Key details and facts
3. Different perspectives or approaches (if applicable)
4. Recent developments or current state
5. Sources and references (if available)"""


def build_research_prompt(topic: str, context: str | None = None) -> str:
    """Research prompt for *topic*, optionally prefixed with background context."""
    prefix = f"## Background Context\n\n{context}\n\n---\n\n" if context else ""
    return prefix + RESEARCH_INSTRUCTIONS.format(topic=topic)


@dataclass
class _Run:
    """Mutable state of one query; never shared between tasks."""

    model: Model
    topic: str
    store: CheckpointStore | None
    on_token: TokenCallback | None
    job_id: str | None = None
    handle: CheckpointHandle | None = None
    content: str = ""
    usage: Usage | None = None
    citations: list[Citation] = field(default_factory=list)
    completed: bool = False
    failure: Err | None = None
    stream_error: str | None = None
    log_context: LogContext | None = None

    async def attach(self, job_id: str) -> None:
        """Record the job id and open its checkpoint."""
        self.job_id = job_id
        if self.log_context is not None:
            self.log_context.bind(job_id=job_id)
        logger.info("research job started: job_id=%s model=%s", job_id, self.model.model_id)
        if self.store is None:
            return
        try:
            self.handle = await self.store.open(job_id, model=self.model, topic=self.topic)
        except (OSError, CheckpointError):
            logger.error("cannot open checkpoint for %s; continuing without one", job_id, exc_info=True)

    async def emit(self, text: str, *, sequence: int | None = None) -> None:
        """Forward *text* to the token callback and the checkpoint, in that order."""
        if not text:
            return
        self.content += text
        if self.on_token is not None:
            self.on_token(text)
        if self.handle is not None and self.store is not None:
            try:
                await self.store.append(self.handle, text, sequence=sequence)
            except (OSError, CheckpointError):
                logger.error("checkpoint append failed for %s; detaching", self.job_id, exc_info=True)
                self.handle = None

    async def absorb(self, document: str | None) -> None:
        """Treat *document* as the authoritative full text and emit only its unseen suffix."""
        if document and len(document) > len(self.content):
            suffix = document[len(self.content):]
            await self.emit(suffix)
            self.content = document

    async def finish(self) -> None:
        """Delete the checkpoint when the job completed; otherwise keep it for recovery."""
        if self.handle is None or self.store is None:
            return
        if self.completed:
            await self.store.complete(self.handle, delete=True, usage=self.usage)
        else:
            logger.info("checkpoint kept for recovery: job_id=%s path=%s", self.job_id, self.handle.path)


class ResearchClient(ABC):
    """Base class for a provider family's deep-research protocol.

    Args:
        api_key: Provider credential.
        checkpoints: Store for in-flight job records; ``None`` disables them.
        poll_interval: Seconds between status polls.
        max_poll_attempts: Poll attempts before giving up with ``timeout``.
        first_event_timeout: Seconds to wait for the first stream event.
        queue_size: Bound of the producer/consumer event queue.
    """

    provider: ClassVar[str]

    def __init__(
        self,
        api_key: str,
        checkpoints: CheckpointStore | None = None,
        *,
        poll_interval: float = 10.0,
        max_poll_attempts: int = 120,
        first_event_timeout: float = 120.0,
        queue_size: int = 256,
    ) -> None:
        self.api_key = api_key
        self.checkpoints = checkpoints
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.first_event_timeout = first_event_timeout
        self.queue_size = queue_size

    # -- provider protocol ---------------------------------------------------

    @abstractmethod
    async def submit(self, prompt: str, model: Model) -> JobSnapshot:
        """Start a background job and return its first snapshot.

        Raises:
            ProviderError: The provider rejected the request.
            ResearchTransportError: The request never got an answer.
        """

    @abstractmethod
    def submit_stream(self, prompt: str, model: Model) -> AsyncIterator[StreamEvent]:
        """Start a background job and yield its events as they arrive."""

    @abstractmethod
    async def retrieve(self, job_id: str) -> JobSnapshot:
        """Fetch the current state of *job_id*."""

    async def aclose(self) -> None:
        """Release network resources."""

    # -- lifecycle -----------------------------------------------------------

    async def poll(
        self,
        job_id: str,
        *,
        interval: float | None = None,
        max_attempts: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PollResult:
        return await poll_job(
            self.retrieve,
            job_id,
            interval=self.poll_interval if interval is None else interval,
            max_attempts=self.max_poll_attempts if max_attempts is None else max_attempts,
            on_progress=on_progress,
        )

    async def query(
        self,
        topic: str,
        model: Model,
        *,
        stream: bool = False,
        on_token: TokenCallback | None = None,
        context: str | None = None,
        persist: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> ModelResponse:
        """Run one deep-research query to a terminal outcome.

        Never raises for provider or transport failures: they come back as a
        failed ``ModelResponse``. ``asyncio.CancelledError`` propagates and
        leaves the checkpoint in place, since the background job keeps
        running server-side.
        """
        prompt = build_research_prompt(topic, context)
        run = _Run(
            model=model,
            topic=topic,
            store=self.checkpoints if persist else None,
            on_token=on_token,
        )
        started = time.monotonic()
        with LogContext(provider=self.provider, model=model.model_id) as log_context:
            run.log_context = log_context
            try:
                if stream:
                    await self._stream(run, prompt, on_progress)
                else:
                    await self._submit_and_poll(run, prompt, on_progress)
            except ResearchError as exc:
                run.failure = categorize(exc, provider=model.provider, partial_content=run.content)
                logger.error("research query failed: %s", run.failure.message)
            except asyncio.CancelledError:
                logger.warning("research query cancelled: job_id=%s", run.job_id)
                raise
            finally:
                await run.finish()
        return self._respond(run, int((time.monotonic() - started) * 1000))

    def _respond(self, run: _Run, duration_ms: int) -> ModelResponse:
        if run.completed:
            return ModelResponse.success(
                run.model,
                run.content,
                usage=usage_cost(run.model, run.usage),
                duration_ms=duration_ms,
                job_id=run.job_id,
                citations=run.citations,
            )
        failure = run.failure or Err(
            category=ErrorCategory.UNKNOWN, message="Research ended without a result"
        )
        return ModelResponse.failure(
            run.model,
            failure.category,
            failure.message,
            partial_content=run.content,
            duration_ms=duration_ms,
            job_id=run.job_id,
        )

    async def _submit_and_poll(self, run: _Run, prompt: str, on_progress: ProgressCallback | None) -> None:
        snapshot = await self.submit(prompt, run.model)
        await run.attach(snapshot.job_id)
        status = JobStatus.parse(snapshot.status)
        if status == JobStatus.COMPLETED:
            logger.debug("job %s completed at submission", snapshot.job_id)
            await run.absorb(snapshot.content)
            run.usage = snapshot.usage
            run.citations = list(snapshot.citations)
            run.completed = True
            return
        if isinstance(status, JobStatus) and status.is_terminal:
            run.failure = job_error(status.value, snapshot.error, partial_content=run.content)
            return
        await self._recover(run, on_progress)

    async def _pump(self, prompt: str, model: Model, queue: asyncio.Queue[StreamEvent | Exception | None]) -> None:
        try:
            async for event in self.submit_stream(prompt, model):
                await queue.put(event)
        except Exception as exc:  # handed to the consumer, which re-raises what it cannot handle
            await queue.put(exc)
        await queue.put(None)

    async def _stream(self, run: _Run, prompt: str, on_progress: ProgressCallback | None) -> None:
        queue: asyncio.Queue[StreamEvent | Exception | None] = asyncio.Queue(maxsize=self.queue_size)
        pump = asyncio.create_task(self._pump(prompt, run.model, queue))
        try:
            await self._consume(run, queue)
        finally:
            if not pump.done():
                pump.cancel()
            await asyncio.wait({pump})

        if run.completed or run.failure is not None:
            return
        if run.job_id is None:
            logger.warning(
                "stream for %s ended before a job id was seen; the job cannot be recovered",
                run.model.model_id,
            )
            run.failure = _stream_lost(run.stream_error, run.content)
            return
        logger.info("stream for %s ended early (%s); polling", run.job_id, run.stream_error or "closed")
        await self._recover(run, on_progress)

    async def _consume(self, run: _Run, queue: asyncio.Queue[StreamEvent | Exception | None]) -> None:
        first = True
        while True:
            if first:
                try:
                    item = await asyncio.wait_for(queue.get(), self.first_event_timeout)
                except TimeoutError:
                    run.failure = Err(
                        category=ErrorCategory.TIMEOUT,
                        message=f"No stream event within {self.first_event_timeout:g}s",
                    )
                    return
                first = False
            else:
                item = await queue.get()

            if item is None:
                return
            if isinstance(item, Exception):
                if not isinstance(item, ResearchError):
                    raise item
                if isinstance(item, ProviderError) and run.job_id is None:
                    raise item
                run.stream_error = str(item)
                return

            if item.job_id and run.job_id is None:
                await run.attach(item.job_id)
            match item.kind:
                case "delta":
                    await run.emit(item.text, sequence=item.sequence)
                case "completed":
                    await run.absorb(item.content)
                    run.usage = item.usage or run.usage
                    run.citations = list(item.citations) or run.citations
                    run.completed = True
                    return
                case "failed":
                    run.failure = job_error("failed", item.error, partial_content=run.content)
                    return
                case "error":
                    run.stream_error = item.error or "stream error"
                    return

    async def _recover(self, run: _Run, on_progress: ProgressCallback | None) -> None:
        job_id = run.job_id or ""

        def progress(status: str, elapsed: float) -> None:
            logger.debug("job %s: %s (%.0fs elapsed)", job_id, status, elapsed)
            if on_progress is not None:
                on_progress(status, elapsed)

        result = await self.poll(job_id, on_progress=progress)
        await run.absorb(result.content)
        if result.completed:
            run.usage = result.usage or run.usage
            run.citations = list(result.citations) or run.citations
            run.completed = True
        else:
            run.failure = job_error(result.status, result.error, partial_content=run.content)


def _stream_lost(reason: str | None, partial_content: str) -> Err:
    return Err(
        category=ErrorCategory.DISCONNECTED,
        message=f"Stream ended before a job id was received: {reason or 'connection closed'}",
        partial_content=partial_content,
    )


research_client_registry: Registry[type[ResearchClient]] = Registry("research_client_registry")
