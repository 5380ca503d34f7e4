# ============================================================================
# MEMORY STORE TESTS
# ============================================================================
# STATUS: Tests - In-memory ClusterJobStore
# PURPOSE: Verify the atomic operations the orchestrator relies on
# CREATED: 17 MAR 2026
# ============================================================================
"""
Memory Store Tests

Covers:
1. Job id assignment and copy isolation
2. Log creation, element logs, delete cascade
3. append_terminal() first-writer-wins
4. increment_progress() under concurrency
5. Owner notification claims

Run with:
    pytest tests/test_memory_store.py -v
"""

import asyncio
import pytest
from pathlib import Path

from core.contracts import JobStatus, ResultType
from core.models import (
    ClusterJob,
    CommandsScript,
    FailureEntry,
    HistoryEntry,
    JobResult,
    LaunchResult,
)
from repositories import MemoryClusterJobStore


@pytest.fixture
def store():
    return MemoryClusterJobStore()


def _job(owner_id=None, array_size=None):
    return ClusterJob(
        commands=CommandsScript(commands=["true"], array_size=array_size),
        dir=Path("/data"),
        owner_id=owner_id,
    )


class TestJobs:

    def test_create_assigns_id(self, store):
        async def run_test():
            job = await store.create_job(_job(owner_id="o1"))
            assert job.job_id is not None
            assert "_" not in job.job_id
            assert (await store.get_job(job.job_id)).owner_id == "o1"

        asyncio.run(run_test())

    def test_returned_copies_are_isolated(self, store):
        async def run_test():
            job = await store.create_job(_job())
            job.args.append("--mem=1G")
            assert (await store.get_job(job.job_id)).args == []

        asyncio.run(run_test())

    def test_jobs_by_owner(self, store):
        async def run_test():
            first = await store.create_job(_job(owner_id="o1"))
            await store.create_job(_job(owner_id="o2"))
            second = await store.create_job(_job(owner_id="o1"))

            jobs = await store.get_jobs_by_owner("o1")
            assert [j.job_id for j in jobs] == [first.job_id, second.job_id]
            assert await store.get_jobs_by_owner("nobody") == []

        asyncio.run(run_test())

    def test_delete_cascades_to_logs(self, store):
        async def run_test():
            job = await store.create_job(_job(array_size=2))
            await store.create_log(job.job_id, HistoryEntry(status=JobStatus.SUBMITTED), array_size=2)
            await store.push_history(job.job_id, 1, HistoryEntry(status=JobStatus.STARTED))

            assert await store.delete_job(job.job_id)
            assert await store.get_log(job.job_id) is None
            assert await store.get_element_logs(job.job_id) == []
            assert not await store.delete_job(job.job_id)

        asyncio.run(run_test())


class TestLogs:

    def test_create_log(self, store):
        async def run_test():
            log = await store.create_log("j", HistoryEntry(status=JobStatus.SUBMITTED), array_size=3)
            assert log.status() == JobStatus.SUBMITTED
            assert log.array_progress.num_started == 0

            single = await store.create_log("k", HistoryEntry(status=JobStatus.SUBMITTED))
            assert single.array_progress is None

        asyncio.run(run_test())

    def test_element_logs_sorted(self, store):
        async def run_test():
            for index in (3, 1, 2):
                await store.push_history("j", index, HistoryEntry(status=JobStatus.STARTED))
            logs = await store.get_element_logs("j")
            assert [log.array_index for log in logs] == [1, 2, 3]

        asyncio.run(run_test())

    def test_append_terminal_once(self, store):
        async def run_test():
            await store.create_log("j", HistoryEntry(status=JobStatus.STARTED))
            results = await asyncio.gather(*[
                store.append_terminal("j", None, HistoryEntry(status=JobStatus.ENDED))
                for _ in range(5)
            ])
            assert results.count(True) == 1

            assert not await store.append_terminal("j", None, HistoryEntry(status=JobStatus.ABANDONED))
            log = await store.get_log("j")
            assert [e.status for e in log.history] == [JobStatus.STARTED, JobStatus.ENDED]

        asyncio.run(run_test())

    def test_results_and_failures(self, store):
        async def run_test():
            await store.create_log("j", HistoryEntry(status=JobStatus.SUBMITTED))
            assert await store.record_launch("j", HistoryEntry(status=JobStatus.LAUNCHED), LaunchResult(job_id=9))
            await store.push_failure("j", 2, FailureEntry(reason="lost node"))
            await store.set_result("j", None, JobResult(type=ResultType.FAILURE, exit_code=1))

            log = await store.get_log("j")
            assert log.status() == JobStatus.LAUNCHED
            assert log.launch_result.job_id == 9
            assert log.result.exit_code == 1
            assert (await store.get_log("j", 2)).failures[0].reason == "lost node"

        asyncio.run(run_test())

    def test_record_launch_skips_terminal_log(self, store):
        async def run_test():
            await store.create_log("j", HistoryEntry(status=JobStatus.SUBMITTED))
            await store.push_history("j", None, HistoryEntry(status=JobStatus.CANCELING))
            assert await store.append_terminal("j", None, HistoryEntry(status=JobStatus.ENDED))

            launched = await store.record_launch("j", HistoryEntry(status=JobStatus.LAUNCHED), LaunchResult(job_id=9))

            assert not launched
            log = await store.get_log("j")
            assert log.status() == JobStatus.ENDED
            assert JobStatus.LAUNCHED not in [e.status for e in log.history]
            # kept so the backend can still cancel the native job
            assert log.launch_result.job_id == 9

        asyncio.run(run_test())

    def test_increment_progress_concurrent(self, store):
        async def run_test():
            await store.create_log("j", HistoryEntry(status=JobStatus.LAUNCHED), array_size=50)
            progress = await asyncio.gather(*[
                store.increment_progress("j", ended=1, failed=i % 2)
                for i in range(50)
            ])
            assert sorted(p.num_ended for p in progress) == list(range(1, 51))

            final = (await store.get_log("j")).array_progress
            assert final.num_ended == 50
            assert final.num_failed == 25

        asyncio.run(run_test())


class TestOwnerClaims:

    def test_claim_once_per_round(self, store):
        async def run_test():
            assert await store.claim_owner_notification("o1", "round-a")
            assert not await store.claim_owner_notification("o1", "round-a")
            assert await store.claim_owner_notification("o1", "round-b")
            assert await store.claim_owner_notification("o2", "round-a")

            await store.clear_owner_notifications("o1")
            assert await store.claim_owner_notification("o1", "round-a")

        asyncio.run(run_test())
