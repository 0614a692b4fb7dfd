"""Durable local records of in-flight research jobs.

A checkpoint is created when a job id becomes known, appended to on every
streamed chunk and deleted once the job completes. Anything left on disk is
a recovery record: the job can be fetched again by id.

On disk each checkpoint is a single ``.md`` file made of a fixed-size header
block followed by the raw body::

    ---
    job_id: resp_123
    model: O3 Deep Research
    model_id: o3-deep-research-2025-06-26
    topic: History of the transistor
    started_at: 2026-01-05T10:00:00+00:00
    last_sequence: 41
    ---<space padding to 1024 bytes>
    ...body...

Body writes only ever append. Metadata updates rewrite the header block in
place, so a crash mid-append leaves the header and every flushed body byte
readable.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from quorum.types import Model, QuorumError, Usage

logger = logging.getLogger(__name__)

HEADER_SIZE = 1024
TOPIC_MAX_CHARS = 200
_DELIM = "---"
_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_-]")


class CheckpointError(QuorumError):
    """Raised for unreadable checkpoint files or oversized headers."""


@dataclass(slots=True)
class CheckpointHandle:
    """Open checkpoint owned by exactly one query task."""

    path: Path
    job_id: str
    model: str
    model_id: str
    topic: str
    started_at: datetime
    last_sequence: int | None = None
    completed_at: datetime | None = None
    usage: Usage | None = None


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Snapshot of a checkpoint file as read back from storage."""

    path: Path
    job_id: str
    model: str
    model_id: str
    topic: str
    started_at: datetime
    content: str = ""
    last_sequence: int | None = None
    completed_at: datetime | None = None
    usage: Usage | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.now(UTC)) - self.started_at

    def __repr__(self) -> str:
        return (
            f"Checkpoint(job_id={self.job_id!r}, model_id={self.model_id!r}, "
            f"chars={len(self.content)})"
        )


class CheckpointStore(ABC):
    """Storage interface for job checkpoints.

    The file backend is the default; any key-value store honouring
    append-only bodies can take its place.
    """

    @abstractmethod
    async def open(
        self, job_id: str, *, model: Model, topic: str, started_at: datetime | None = None
    ) -> CheckpointHandle: ...

    @abstractmethod
    async def append(self, handle: CheckpointHandle, text: str, *, sequence: int | None = None) -> None: ...

    @abstractmethod
    async def complete(
        self, handle: CheckpointHandle, *, delete: bool, usage: Usage | None = None
    ) -> None: ...

    @abstractmethod
    async def list(self, *, include_completed: bool = False) -> list[Checkpoint]:
        """Checkpoints newest first, skipping completed ones by default."""

    @abstractmethod
    async def find_by_job_id(self, job_id: str) -> Checkpoint | None: ...

    @abstractmethod
    async def purge_older_than(self, max_age: timedelta) -> int:
        """Delete checkpoints started more than *max_age* ago; return the count."""

    @abstractmethod
    async def remove(self, job_id: str) -> bool:
        """Delete every checkpoint for *job_id*; ``True`` if any existed."""


# ---------------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------------


def _sanitize_id(job_id: str) -> str:
    return _UNSAFE_ID.sub("_", job_id)


def _one_line(value: str) -> str:
    return value.replace("\r", " ").replace("\n", " ")


def _render_header(handle: CheckpointHandle) -> bytes:
    def lines(topic: str) -> str:
        fields: list[tuple[str, object]] = [
            ("job_id", handle.job_id),
            ("model", handle.model),
            ("model_id", handle.model_id),
            ("topic", topic),
            ("started_at", handle.started_at.isoformat()),
        ]
        if handle.last_sequence is not None:
            fields.append(("last_sequence", handle.last_sequence))
        if handle.completed_at is not None:
            fields.append(("completed_at", handle.completed_at.isoformat()))
        if handle.usage is not None:
            fields.append(("usage_input", handle.usage.input_tokens))
            fields.append(("usage_output", handle.usage.output_tokens))
            fields.append(("usage_total", handle.usage.total_tokens))
        body = "".join(f"{k}: {_one_line(str(v))}\n" for k, v in fields)
        return f"{_DELIM}\n{body}{_DELIM}"

    topic = _one_line(handle.topic)[:TOPIC_MAX_CHARS]
    encoded = lines(topic).encode("utf-8")
    # Multi-byte topics can overflow the block; shorten the topic until it fits.
    while len(encoded) + 1 > HEADER_SIZE and topic:
        topic = topic[:-8]
        encoded = lines(topic).encode("utf-8")
    if len(encoded) + 1 > HEADER_SIZE:
        raise CheckpointError(f"Checkpoint header for {handle.job_id!r} exceeds {HEADER_SIZE} bytes")
    return encoded + b" " * (HEADER_SIZE - len(encoded) - 1) + b"\n"


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _parse_file(path: Path) -> Checkpoint:
    """Read *path* into a ``Checkpoint``.

    Raises:
        FileNotFoundError: If the file vanished.
        CheckpointError: If the header is malformed.
    """
    data = path.read_bytes()
    if len(data) < HEADER_SIZE:
        raise CheckpointError(f"{path.name}: truncated header")
    header = data[:HEADER_SIZE].decode("utf-8", errors="replace").split("\n")
    if header[0] != _DELIM:
        raise CheckpointError(f"{path.name}: missing header delimiter")
    meta: dict[str, str] = {}
    for line in header[1:]:
        if line.rstrip() == _DELIM:
            break
        key, sep, value = line.partition(": ")
        if sep:
            meta[key] = value
    else:
        raise CheckpointError(f"{path.name}: unterminated header")

    try:
        started_at = _parse_datetime(meta.get("started_at"))
        usage = None
        if "usage_total" in meta:
            usage = Usage(
                input_tokens=int(meta.get("usage_input", "0")),
                output_tokens=int(meta.get("usage_output", "0")),
                total_tokens=int(meta["usage_total"]),
            )
        last_sequence = int(meta["last_sequence"]) if meta.get("last_sequence") else None
        completed_at = _parse_datetime(meta.get("completed_at"))
    except ValueError as exc:
        raise CheckpointError(f"{path.name}: {exc}") from exc
    if not meta.get("job_id") or started_at is None:
        raise CheckpointError(f"{path.name}: missing job_id or started_at")

    return Checkpoint(
        path=path,
        job_id=meta["job_id"],
        model=meta.get("model", ""),
        model_id=meta.get("model_id", ""),
        topic=meta.get("topic", ""),
        started_at=started_at,
        content=data[HEADER_SIZE:].decode("utf-8", errors="replace"),
        last_sequence=last_sequence,
        completed_at=completed_at,
        usage=usage,
    )


def _append_bytes(path: Path, data: bytes) -> None:
    with path.open("ab") as fh:
        fh.write(data)


def _rewrite_header(handle: CheckpointHandle) -> None:
    with handle.path.open("r+b") as fh:
        fh.seek(0)
        fh.write(_render_header(handle))


@dataclass
class FileCheckpointStore(CheckpointStore):
    """Checkpoints as files named ``<epoch-ms>-<sanitized job id>.md``.

    File access runs in worker threads so a slow disk never stalls the
    event loop driving the other queries.

    Args:
        directory: Where checkpoint files live. Created on first write.
    """

    directory: Path

    def _path_for(self, job_id: str, started_at: datetime) -> Path:
        stamp = int(started_at.timestamp() * 1000)
        return self.directory / f"{stamp}-{_sanitize_id(job_id)}.md"

    async def open(
        self, job_id: str, *, model: Model, topic: str, started_at: datetime | None = None
    ) -> CheckpointHandle:
        started = started_at or datetime.now(UTC)
        handle = CheckpointHandle(
            path=self._path_for(job_id, started),
            job_id=job_id,
            model=model.display_name,
            model_id=model.model_id,
            topic=topic,
            started_at=started,
        )
        header = _render_header(handle)
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(handle.path.write_bytes, header)
        logger.debug("checkpoint opened: job_id=%s path=%s", job_id, handle.path)
        return handle

    async def append(self, handle: CheckpointHandle, text: str, *, sequence: int | None = None) -> None:
        if text:
            await asyncio.to_thread(_append_bytes, handle.path, text.encode("utf-8"))
        if sequence is not None and sequence != handle.last_sequence:
            handle.last_sequence = sequence
            await asyncio.to_thread(_rewrite_header, handle)

    async def complete(
        self, handle: CheckpointHandle, *, delete: bool, usage: Usage | None = None
    ) -> None:
        if delete:
            await asyncio.to_thread(handle.path.unlink, missing_ok=True)
            logger.debug("checkpoint deleted: job_id=%s", handle.job_id)
            return
        handle.completed_at = datetime.now(UTC)
        if usage is not None:
            handle.usage = usage
        try:
            await asyncio.to_thread(_rewrite_header, handle)
        except FileNotFoundError:
            logger.debug("checkpoint %s vanished before completion stamp", handle.path.name)

    def _scan(self, pattern: str = "*.md") -> list[Checkpoint]:
        if not self.directory.is_dir():
            return []
        found: list[Checkpoint] = []
        for path in sorted(self.directory.glob(pattern)):
            try:
                found.append(_parse_file(path))
            except FileNotFoundError:
                # Removed between listing and reading: already recovered.
                continue
            except CheckpointError as exc:
                logger.debug("skipping unreadable checkpoint: %s", exc)
        found.sort(key=lambda cp: cp.started_at, reverse=True)
        return found

    async def list(self, *, include_completed: bool = False) -> list[Checkpoint]:
        found = await asyncio.to_thread(self._scan)
        return [cp for cp in found if include_completed or not cp.is_completed]

    async def find_by_job_id(self, job_id: str) -> Checkpoint | None:
        for cp in await asyncio.to_thread(self._scan, f"*-{_sanitize_id(job_id)}.md"):
            if cp.job_id == job_id:
                return cp
        return None

    async def purge_older_than(self, max_age: timedelta) -> int:
        now = datetime.now(UTC)
        deleted = 0
        for cp in await asyncio.to_thread(self._scan):
            if cp.age(now) > max_age:
                await asyncio.to_thread(cp.path.unlink, missing_ok=True)
                deleted += 1
        if deleted:
            logger.info("purged %d checkpoint(s) older than %s", deleted, max_age)
        return deleted

    async def remove(self, job_id: str) -> bool:
        removed = False
        for cp in await asyncio.to_thread(self._scan, f"*-{_sanitize_id(job_id)}.md"):
            if cp.job_id == job_id:
                await asyncio.to_thread(cp.path.unlink, missing_ok=True)
                removed = True
        return removed
