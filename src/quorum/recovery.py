"""Recover deep-research jobs that outlived the process that started them.

Checkpoints left on disk name a job id and the model that ran it. ``JobRecovery``
looks the job up again with the matching research client and reconciles the
remote document with the locally streamed body.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta

from quorum.catalog import MODELS, get_model, usage_cost
from quorum.checkpoint import Checkpoint, CheckpointStore
from quorum.research import JobStatus, ProviderError, ResearchClient, ResearchError
from quorum.types import ConfigurationError, Model, Usage

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(minutes=30)
_ENDED = frozenset({JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.EXPIRED})


@dataclass(frozen=True, slots=True)
class RecoveredJob:
    """A job fetched again by id.

    ``content`` is never shorter than ``local_content``, the body that was
    checkpointed before the interruption.
    """

    job_id: str
    status: str
    content: str = ""
    usage: Usage | None = None
    error: str | None = None
    local_content: str = ""

    @property
    def completed(self) -> bool:
        return self.status == JobStatus.COMPLETED


@dataclass(slots=True)
class RecoveryReport:
    """Outcome of one ``recover_pending`` sweep.

    Only ``recovered`` jobs lost their checkpoint; ``failed``, ``stale`` and
    ``pending`` jobs remain findable by job id.
    """

    recovered: list[RecoveredJob] = field(default_factory=list)
    failed: list[RecoveredJob] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)


class JobRecovery:
    """Fetch, reconcile and clean up checkpointed research jobs.

    Args:
        checkpoints: Store holding the local job records.
        research_clients: Provider name -> research client.
        models: Catalog used to map a checkpoint's model id to its provider.
    """

    def __init__(
        self,
        checkpoints: CheckpointStore,
        research_clients: Mapping[str, ResearchClient],
        models: Sequence[Model] | None = None,
    ) -> None:
        self.checkpoints = checkpoints
        self.research_clients = dict(research_clients)
        self.models = list(MODELS if models is None else models)

    def _candidates(self, checkpoint: Checkpoint | None) -> tuple[Model | None, list[ResearchClient]]:
        model = get_model(checkpoint.model_id, self.models) if checkpoint else None
        if model is not None and model.provider in self.research_clients:
            return model, [self.research_clients[model.provider]]
        return model, list(self.research_clients.values())

    async def retrieve_by_job_id(self, job_id: str, *, poll: bool = True) -> RecoveredJob:
        """Fetch *job_id* from its provider, polling while it is still running.

        The checkpoint is deleted once the job is ``completed``.

        Raises:
            ConfigurationError: If no research client is configured.
            ResearchError: If every candidate provider rejects the job id, or
                the connection fails.
        """
        checkpoint = await self.checkpoints.find_by_job_id(job_id)
        local = checkpoint.content if checkpoint else ""
        model, clients = self._candidates(checkpoint)
        if not clients:
            raise ConfigurationError("No research clients available (check API keys)")

        last_error: ProviderError | None = None
        for client in clients:
            try:
                snapshot = await client.retrieve(job_id)
            except ProviderError as exc:
                logger.debug("job %s not found via %s: %s", job_id, client.provider, exc)
                last_error = exc
                continue
            status, content = snapshot.status, snapshot.content or ""
            usage, error = snapshot.usage, snapshot.error
            parsed = JobStatus.parse(status)
            if poll and not (isinstance(parsed, JobStatus) and parsed.is_terminal):
                logger.info("job %s still %s; polling", job_id, status)
                result = await client.poll(job_id)
                status, content = result.status, result.content or content
                usage, error = result.usage, result.error
            break
        else:
            raise last_error or ProviderError(f"Job not found: {job_id}")

        if model is not None:
            usage = usage_cost(model, usage)
        if len(content) < len(local):
            content = local
        if status == JobStatus.COMPLETED:
            await self.checkpoints.remove(job_id)
            logger.info("recovered job %s (%d chars)", job_id, len(content))
        return RecoveredJob(
            job_id=job_id,
            status=str(status),
            content=content,
            usage=usage,
            error=error,
            local_content=local,
        )

    async def list_checkpoints(self, include_completed: bool = False) -> list[Checkpoint]:
        return await self.checkpoints.list(include_completed=include_completed)

    async def purge_checkpoints(self, max_age: timedelta) -> int:
        """Delete checkpoints older than *max_age*; return how many went."""
        purged = await self.checkpoints.purge_older_than(max_age)
        if purged:
            logger.info("purged %d checkpoint(s) older than %s", purged, max_age)
        return purged

    async def recover_pending(self, *, stale_after: timedelta = STALE_AFTER) -> RecoveryReport:
        """Check every incomplete checkpoint once and sort the jobs.

        Completed jobs are recovered and their checkpoints removed. Every
        other checkpoint stays on disk: jobs that failed, were cancelled or
        expired land in ``failed``, jobs still running past *stale_after* in
        ``stale``, and the rest (including provider errors) in ``pending``.
        Only ``purge_checkpoints`` deletes unfinished jobs.
        """
        report = RecoveryReport()
        for checkpoint in await self.checkpoints.list():
            job_id = checkpoint.job_id
            try:
                job = await self.retrieve_by_job_id(job_id, poll=False)
            except ResearchError as exc:
                logger.warning("could not check job %s: %s", job_id, exc)
                report.pending.append(job_id)
                continue
            if job.completed:
                report.recovered.append(job)
            elif JobStatus.parse(job.status) in _ENDED:
                logger.info("job %s %s; checkpoint kept", job_id, job.status)
                report.failed.append(job)
            elif checkpoint.age() > stale_after:
                logger.warning("job %s still %s after %s", job_id, job.status, checkpoint.age())
                report.stale.append(job_id)
            else:
                report.pending.append(job_id)
        return report
