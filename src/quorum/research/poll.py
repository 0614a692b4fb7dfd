"""Bounded polling of a background job until it reaches a terminal state."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from quorum.research.errors import ResearchTransportError
from quorum.research.types import JobSnapshot, JobStatus, PollResult

logger = logging.getLogger(__name__)

Retrieve = Callable[[str], Awaitable[JobSnapshot]]
ProgressCallback = Callable[[str, float], None]

_DEFAULT_ERRORS = {
    JobStatus.FAILED: "Research failed",
    JobStatus.CANCELLED: "Research was cancelled",
    JobStatus.EXPIRED: "Research job expired",
}


async def poll_job(
    retrieve: Retrieve,
    job_id: str,
    *,
    interval: float = 10.0,
    max_attempts: int = 120,
    on_progress: ProgressCallback | None = None,
) -> PollResult:
    """Poll *job_id* until it completes, fails, or the attempt budget runs out.

    Each attempt calls ``retrieve(job_id)``. Non-terminal statuses are
    reported through ``on_progress(status, elapsed_seconds)`` and followed by
    a sleep of *interval* seconds. A ``ResearchTransportError`` on one attempt
    counts as an attempt and is retried; anything else propagates.

    Args:
        retrieve: Coroutine fetching one ``JobSnapshot``.
        job_id: Provider job id.
        interval: Seconds between attempts.
        max_attempts: Attempts before returning ``status="timeout"``.
        on_progress: Liveness callback.

    Returns:
        A ``PollResult``. ``timeout`` is recoverable: the job may still finish
        server-side and can be retrieved later.
    """
    started = time.monotonic()

    def progress(status: str) -> None:
        if on_progress is not None:
            on_progress(status, time.monotonic() - started)

    for attempt in range(1, max_attempts + 1):
        try:
            snapshot = await retrieve(job_id)
        except ResearchTransportError as exc:
            logger.warning("poll attempt %d/%d for %s failed: %s", attempt, max_attempts, job_id, exc)
            progress(f"error (retrying): {exc}")
        else:
            status = JobStatus.parse(snapshot.status)
            if status == JobStatus.COMPLETED:
                logger.debug("job %s completed after %d attempt(s)", job_id, attempt)
                return PollResult(
                    status=JobStatus.COMPLETED.value,
                    content=snapshot.content,
                    usage=snapshot.usage,
                    citations=snapshot.citations,
                )
            if status in _DEFAULT_ERRORS:
                logger.info("job %s ended with status %s", job_id, status)
                return PollResult(
                    status=status.value,
                    content=snapshot.content,
                    error=snapshot.error or _DEFAULT_ERRORS[status],
                )
            progress(str(status))
        await asyncio.sleep(interval)

    seconds = round(max_attempts * interval)
    logger.warning("gave up polling %s after %d attempts", job_id, max_attempts)
    return PollResult(
        status=JobStatus.TIMEOUT.value,
        error=f"Timed out after {max_attempts} attempts ({seconds}s)",
    )
