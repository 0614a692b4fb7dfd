"""Tests for recovering interrupted research jobs by id."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import ScriptedResearchClient, model, snapshot

from quorum.checkpoint import FileCheckpointStore
from quorum.recovery import JobRecovery
from quorum.research import JobSnapshot, ProviderError, ResearchTransportError
from quorum.types import ConfigurationError, Usage

USAGE = Usage(input_tokens=1000, output_tokens=2000, total_tokens=3000)

OPENAI_DEEP = model("o3-deep-research-2025-06-26")
GEMINI_DEEP = model("deep-research-pro-preview-12-2025")


class _ByJobClient(ScriptedResearchClient):
    """Answers ``retrieve`` from a job id -> snapshot (or exception) map."""

    def __init__(self, store: FileCheckpointStore, answers: dict[str, JobSnapshot | Exception]) -> None:
        super().__init__(store)
        self.answers = answers

    async def retrieve(self, job_id: str) -> JobSnapshot:
        self.retrieved.append(job_id)
        answer = self.answers[job_id]
        if isinstance(answer, Exception):
            raise answer
        return answer


async def _checkpoint(
    store: FileCheckpointStore,
    job_id: str = "job_1",
    body: str = "",
    *,
    model_=OPENAI_DEEP,
    age: timedelta = timedelta(0),
) -> None:
    handle = await store.open(
        job_id, model=model_, topic="topic", started_at=datetime.now(UTC) - age
    )
    await store.append(handle, body)


# ---------------------------------------------------------------------------
# retrieve_by_job_id
# ---------------------------------------------------------------------------


class TestRetrieveByJobId:
    async def test_completed_job_removes_checkpoint(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, body="AB")
        client = ScriptedResearchClient(store, snapshots=[snapshot("completed", "ABCDE", usage=USAGE)])

        job = await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1")

        assert job.completed
        assert job.content == "ABCDE"
        assert job.local_content == "AB"
        assert job.usage is not None and job.usage.estimated_cost == pytest.approx(0.09)
        assert await store.find_by_job_id("job_1") is None

    async def test_content_never_shorter_than_local(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, body="ABCDEFG")
        client = ScriptedResearchClient(store, snapshots=[snapshot("completed", "ABC")])
        job = await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1")
        assert job.content == "ABCDEFG"

    async def test_polls_running_job(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store)
        client = ScriptedResearchClient(
            store,
            snapshots=[snapshot("in_progress"), snapshot("in_progress"), snapshot("completed", "done")],
        )

        job = await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1")

        assert job.completed and job.content == "done"
        assert client.retrieved == ["job_1", "job_1", "job_1"]

    async def test_no_poll_reports_current_status(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, body="AB")
        client = ScriptedResearchClient(store, snapshots=[snapshot("in_progress")])

        job = await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1", poll=False)

        assert job.status == "in_progress"
        assert not job.completed
        assert job.content == "AB"
        assert client.retrieved == ["job_1"]
        assert await store.find_by_job_id("job_1") is not None

    async def test_failed_job_keeps_checkpoint(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store)
        client = ScriptedResearchClient(store, snapshots=[snapshot("failed", error="tool crashed")])
        job = await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1")
        assert job.status == "failed" and job.error == "tool crashed"
        assert await store.find_by_job_id("job_1") is not None

    async def test_provider_inferred_from_checkpoint(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, model_=GEMINI_DEEP)
        openai = ScriptedResearchClient(store, snapshots=[snapshot("completed", "wrong")])
        google = ScriptedResearchClient(store, snapshots=[snapshot("completed", "right")], provider="google")

        job = await JobRecovery(store, {"openai": openai, "google": google}).retrieve_by_job_id("job_1")

        assert job.content == "right"
        assert openai.retrieved == []

    async def test_unknown_job_tries_each_client(self, store: FileCheckpointStore) -> None:
        openai = ScriptedResearchClient(store, snapshots=[ProviderError("No such response", status_code=404)])
        google = ScriptedResearchClient(store, snapshots=[snapshot("completed", "found")], provider="google")

        job = await JobRecovery(store, {"openai": openai, "google": google}).retrieve_by_job_id("job_1")

        assert job.content == "found"
        assert openai.retrieved == ["job_1"]
        assert job.local_content == ""

    async def test_every_client_rejects(self, store: FileCheckpointStore) -> None:
        client = ScriptedResearchClient(store, snapshots=[ProviderError("No such response", status_code=404)])
        with pytest.raises(ProviderError, match="No such response"):
            await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1")

    async def test_transport_error_propagates(self, store: FileCheckpointStore) -> None:
        client = ScriptedResearchClient(store, snapshots=[ResearchTransportError("reset")])
        with pytest.raises(ResearchTransportError):
            await JobRecovery(store, {"openai": client}).retrieve_by_job_id("job_1")

    async def test_no_clients(self, store: FileCheckpointStore) -> None:
        with pytest.raises(ConfigurationError, match="No research clients available"):
            await JobRecovery(store, {}).retrieve_by_job_id("job_1")


# ---------------------------------------------------------------------------
# Checkpoint housekeeping
# ---------------------------------------------------------------------------


class TestHousekeeping:
    async def test_list_checkpoints(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, "a")
        await _checkpoint(store, "b", age=timedelta(hours=1))
        recovery = JobRecovery(store, {})
        assert [cp.job_id for cp in await recovery.list_checkpoints()] == ["a", "b"]

    async def test_purge_checkpoints(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, "old", age=timedelta(days=10))
        await _checkpoint(store, "new")
        recovery = JobRecovery(store, {})

        assert await recovery.purge_checkpoints(timedelta(days=7)) == 1
        assert [cp.job_id for cp in await store.list()] == ["new"]


# ---------------------------------------------------------------------------
# recover_pending
# ---------------------------------------------------------------------------


class TestRecoverPending:
    async def test_sweep_sorts_jobs(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, "done", "partial")
        await _checkpoint(store, "dead", "half a report")
        await _checkpoint(store, "old", age=timedelta(hours=2))
        await _checkpoint(store, "fresh")
        await _checkpoint(store, "flaky")
        client = _ByJobClient(
            store,
            {
                "done": snapshot("completed", "partial and more", job_id="done"),
                "dead": snapshot("expired", job_id="dead"),
                "old": snapshot("in_progress", job_id="old"),
                "fresh": snapshot("queued", job_id="fresh"),
                "flaky": ResearchTransportError("reset"),
            },
        )

        report = await JobRecovery(store, {"openai": client}).recover_pending()

        assert [job.job_id for job in report.recovered] == ["done"]
        assert report.recovered[0].content == "partial and more"
        assert [job.job_id for job in report.failed] == ["dead"]
        assert report.failed[0].content == "half a report"
        assert report.stale == ["old"]
        assert sorted(report.pending) == ["flaky", "fresh"]
        assert sorted(cp.job_id for cp in await store.list()) == ["dead", "flaky", "fresh", "old"]

    async def test_unfinished_jobs_keep_checkpoints(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, "running_40m", "AB", age=timedelta(minutes=40))
        await _checkpoint(store, "failed_job", "CD")
        client = _ByJobClient(
            store,
            {
                "running_40m": snapshot("in_progress", job_id="running_40m"),
                "failed_job": snapshot("failed", job_id="failed_job", error="tool crashed"),
            },
        )

        report = await JobRecovery(store, {"openai": client}).recover_pending()

        assert report.stale == ["running_40m"]
        assert [job.error for job in report.failed] == ["tool crashed"]
        running = await store.find_by_job_id("running_40m")
        failed = await store.find_by_job_id("failed_job")
        assert running is not None and running.content == "AB"
        assert failed is not None and failed.content == "CD"

    async def test_sweep_does_not_poll(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, "slow")
        client = _ByJobClient(store, {"slow": snapshot("in_progress", job_id="slow")})

        report = await JobRecovery(store, {"openai": client}).recover_pending()

        assert report.pending == ["slow"]
        assert client.retrieved == ["slow"]

    async def test_custom_stale_window(self, store: FileCheckpointStore) -> None:
        await _checkpoint(store, "job", age=timedelta(minutes=5))
        client = _ByJobClient(store, {"job": snapshot("in_progress", job_id="job")})

        report = await JobRecovery(store, {"openai": client}).recover_pending(stale_after=timedelta(minutes=1))

        assert report.stale == ["job"]
        assert await store.find_by_job_id("job") is not None

    async def test_completed_checkpoints_skipped(self, store: FileCheckpointStore) -> None:
        handle = await store.open("kept", model=OPENAI_DEEP, topic="t")
        await store.complete(handle, delete=False)
        client = _ByJobClient(store, {})

        report = await JobRecovery(store, {"openai": client}).recover_pending()

        assert (report.recovered, report.failed, report.stale, report.pending) == ([], [], [], [])
        assert client.retrieved == []
