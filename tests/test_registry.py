import asyncio

import pytest

from talkar.pipeline.errors import FatalError, JobNotFoundError
from talkar.pipeline.models import Job, JobKind, JobStatus
from talkar.pipeline.registry import InMemoryJobRegistry


def _set_status(status: JobStatus):
    def mutate(job: Job) -> None:
        job.status = status

    return mutate


class TestCreateIfAbsent:

    @pytest.mark.asyncio
    async def test_same_fingerprint_single_job(self):
        registry = InMemoryJobRegistry()
        results = await asyncio.gather(
            *[registry.create_if_absent("fp", JobKind.FULL) for _ in range(20)]
        )
        assert sum(1 for _, created in results if created) == 1
        assert len({job.id for job, _ in results}) == 1

    @pytest.mark.asyncio
    async def test_new_job_after_terminal(self):
        registry = InMemoryJobRegistry()
        first, _ = await registry.create_if_absent("fp", JobKind.FULL)
        await registry.update(first.id, _set_status(JobStatus.FAILED))

        second, created = await registry.create_if_absent("fp", JobKind.FULL)
        assert created
        assert second.id != first.id


class TestEvict:

    @pytest.mark.asyncio
    async def test_evict_frees_fingerprint(self):
        registry = InMemoryJobRegistry()
        first, _ = await registry.create_if_absent("fp", JobKind.FULL)

        await registry.evict(first.id)
        with pytest.raises(JobNotFoundError):
            await registry.get(first.id)
        assert len(registry) == 0

        second, created = await registry.create_if_absent("fp", JobKind.FULL)
        assert created
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_evict_unknown_is_noop(self):
        registry = InMemoryJobRegistry()
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        await registry.evict("missing")
        assert (await registry.get(job.id)).id == job.id


class TestUpdate:

    @pytest.mark.asyncio
    async def test_forward_transitions(self):
        registry = InMemoryJobRegistry()
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        for status in (
            JobStatus.GENERATING_SCRIPT,
            JobStatus.GENERATING_AUDIO,
            JobStatus.GENERATING_VIDEO,
            JobStatus.COMPLETED,
        ):
            job = await registry.update(job.id, _set_status(status))
        assert job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_regression_rejected(self):
        registry = InMemoryJobRegistry()
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        await registry.update(job.id, _set_status(JobStatus.GENERATING_AUDIO))

        with pytest.raises(FatalError):
            await registry.update(job.id, _set_status(JobStatus.GENERATING_SCRIPT))
        assert (await registry.get(job.id)).status == JobStatus.GENERATING_AUDIO

    @pytest.mark.asyncio
    async def test_terminal_is_final(self):
        registry = InMemoryJobRegistry()
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        await registry.update(job.id, _set_status(JobStatus.FAILED))
        with pytest.raises(FatalError):
            await registry.update(job.id, _set_status(JobStatus.COMPLETED))

    @pytest.mark.asyncio
    async def test_snapshots_are_isolated(self):
        registry = InMemoryJobRegistry()
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        job.script = "tampered"
        assert (await registry.get(job.id)).script is None

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        registry = InMemoryJobRegistry()
        with pytest.raises(JobNotFoundError):
            await registry.get("missing")
        with pytest.raises(JobNotFoundError):
            await registry.update("missing", _set_status(JobStatus.FAILED))


class TestWait:

    @pytest.mark.asyncio
    async def test_wait_returns_terminal_snapshot(self):
        registry = InMemoryJobRegistry()
        job, _ = await registry.create_if_absent("fp", JobKind.SCRIPT)

        async def finish():
            await asyncio.sleep(0.01)
            await registry.update(job.id, _set_status(JobStatus.COMPLETED))

        asyncio.create_task(finish())
        done = await asyncio.wait_for(registry.wait(job.id), timeout=1)
        assert done.status == JobStatus.COMPLETED


class TestPrune:

    @pytest.mark.asyncio
    async def test_observed_jobs_pruned_after_grace(self, clock):
        registry = InMemoryJobRegistry(observed_grace_seconds=60, clock=clock)
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        await registry.update(job.id, _set_status(JobStatus.COMPLETED))
        await registry.get(job.id)

        clock.advance(30)
        assert await registry.prune() == 0
        clock.advance(31)
        assert await registry.prune() == 1
        with pytest.raises(JobNotFoundError):
            await registry.get(job.id)

    @pytest.mark.asyncio
    async def test_unobserved_jobs_kept_until_retention(self, clock):
        registry = InMemoryJobRegistry(retention_seconds=3600, clock=clock)
        job, _ = await registry.create_if_absent("fp", JobKind.FULL)
        await registry.update(job.id, _set_status(JobStatus.FAILED))

        clock.advance(600)
        assert await registry.prune() == 0
        clock.advance(3000)
        assert await registry.prune() == 1

    @pytest.mark.asyncio
    async def test_running_jobs_never_pruned(self, clock):
        registry = InMemoryJobRegistry(retention_seconds=1, max_jobs=0, clock=clock)
        await registry.create_if_absent("fp", JobKind.FULL)
        clock.advance(10_000)
        assert await registry.prune() == 0
        assert registry.active_count() == 1

    @pytest.mark.asyncio
    async def test_size_bound_drops_oldest_terminal(self, clock):
        registry = InMemoryJobRegistry(max_jobs=2, clock=clock)
        ids = []
        for i in range(3):
            job, _ = await registry.create_if_absent(f"fp{i}", JobKind.FULL)
            await registry.update(job.id, _set_status(JobStatus.COMPLETED))
            ids.append(job.id)
            clock.advance(1)

        assert await registry.prune() == 1
        with pytest.raises(JobNotFoundError):
            await registry.get(ids[0], observe=False)
        assert len(registry) == 2
