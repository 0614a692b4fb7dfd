"""Value types shared by the research clients and the poll loop."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from quorum.types import Citation, Usage


class JobStatus(StrEnum):
    """Lifecycle of a provider-side background job, plus the local ``timeout``."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @classmethod
    def parse(cls, raw: str | None) -> JobStatus | str:
        """Map a provider status onto ``JobStatus``, keeping unknown strings as-is.

        OpenAI's ``incomplete`` is a failed job for our purposes.
        """
        if raw is None:
            return cls.IN_PROGRESS
        if raw == "incomplete":
            return cls.FAILED
        try:
            return cls(raw)
        except ValueError:
            return raw


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.EXPIRED})


class JobSnapshot(BaseModel):
    """One observation of a background job."""

    model_config = {"frozen": True}

    job_id: str
    status: str
    content: str = ""
    usage: Usage | None = None
    error: str | None = None
    citations: list[Citation] = Field(default_factory=list)


class StreamEvent(BaseModel):
    """Typed event pushed from a provider stream onto the consumer queue.

    - ``delta``: a chunk of answer text in ``text``.
    - ``completed``: the job finished; ``content`` may hold the full document.
    - ``failed``: the provider reported a terminal failure in ``error``.
    - ``error``: the transport broke; ``error`` holds the reason.

    ``job_id`` is set on whichever events carry one.
    """

    model_config = {"frozen": True}

    kind: Literal["delta", "completed", "failed", "error"]
    text: str = ""
    job_id: str | None = None
    sequence: int | None = None
    usage: Usage | None = None
    content: str | None = None
    error: str | None = None
    citations: list[Citation] = Field(default_factory=list)


class PollResult(BaseModel):
    """Outcome of the poll loop."""

    model_config = {"frozen": True}

    status: str
    content: str = ""
    usage: Usage | None = None
    error: str | None = None
    citations: list[Citation] = Field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == JobStatus.COMPLETED
