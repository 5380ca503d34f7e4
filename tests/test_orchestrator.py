# ============================================================================
# CLUSTER ORCHESTRATOR TESTS
# ============================================================================
# STATUS: Tests - Cluster job lifecycle state machine
# PURPOSE: Verify submit, started/ended, cancel_all and owner notification
# CREATED: 18 MAR 2026
# ============================================================================
"""
Cluster Orchestrator Tests

Covers:
1. submit() persists, resolves dependencies, stages scripts and launches
2. submit() failure recovery (launch failure, unlaunched dependency)
3. started()/ended() for single and array jobs, including interleavings
4. Exit code and failure entry handling
5. cancel_all() status table and return values
6. Owner notification exactly once, by most recent terminal job
7. waiting_reason(), job_log_data(), delete()
8. cancel_all() while a launch is still in flight, and empty arrays

Uses the in-memory store and a scripted backend, no scheduler needed.

Run with:
    pytest tests/test_orchestrator.py -v
"""

import asyncio
import pytest
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

from core.contracts import CancelResult, ClusterMode, JobStatus, ResultType
from core.errors import (
    JobNotFoundError,
    JobStateError,
    LaunchFailedError,
    ValidationFailedError,
)
from core.models import (
    ClusterJob,
    CommandsGrid,
    CommandsScript,
    JobResult,
    LaunchResult,
)
from backends.base import ClusterBackend
from orchestrator import ClusterOrchestrator
from orchestrator.cluster import owner_round_key, reduce_result_types, split_dependency
from orchestrator.engine.commands import CommandsConfig
from repositories import MemoryClusterJobStore
from services import ClusterJobListener, ListenerRegistry, OwnerListener, StreamLog


# ============================================================================
# FIXTURES
# ============================================================================

class ScriptedBackend(ClusterBackend):
    """Backend whose behavior each test sets up."""

    cluster_mode = ClusterMode.LOAD_TESTING

    def __init__(self, commands_config, store):
        super().__init__(commands_config, store)
        self.validation_error: Optional[Exception] = None
        self.launch_error: Optional[Exception] = None
        self.launch_nothing = False
        self.launched: List[Tuple[ClusterJob, List[str], Path]] = []
        self.canceled: List[List[str]] = []
        self.results: Dict[Tuple[str, Optional[int]], JobResult] = {}
        self.reason: Optional[str] = None
        # when set, launch() blocks until the gate opens
        self.launch_gate: Optional[asyncio.Event] = None
        self.launch_entered: Optional[asyncio.Event] = None
        self._next_launch_id = 100

    def validate(self, job):
        if self.validation_error is not None:
            raise self.validation_error

    def validate_dependency(self, dep_id):
        pass

    async def launch(self, job, dep_ids, script_path):
        if self.launch_error is not None:
            raise self.launch_error
        if self.launch_nothing:
            return None
        if self.launch_gate is not None:
            self.launch_entered.set()
            await self.launch_gate.wait()
        self.launched.append((job, dep_ids, script_path))
        self._next_launch_id += 1
        return LaunchResult(job_id=self._next_launch_id, out=f"Submitted batch job {self._next_launch_id}")

    async def cancel(self, jobs):
        self.canceled.append([job.job_id for job in jobs])

    async def job_result(self, job, array_index):
        return self.results.get((job.job_id, array_index), JobResult(type=ResultType.SUCCESS, out="ok"))

    async def waiting_reason(self, job, launch_result):
        return self.reason


class RecordingListener(ClusterJobListener):
    """Records every event as a tuple."""

    def __init__(self):
        self.events: List[tuple] = []

    async def on_submit(self, job):
        self.events.append(("submit", job.job_id))

    async def on_start(self, owner_id, job_id):
        self.events.append(("start", owner_id, job_id))

    async def on_start_array(self, owner_id, job_id, array_index, num_started):
        self.events.append(("start_array", owner_id, job_id, array_index, num_started))

    async def on_end_array(self, owner_id, job_id, array_index, num_ended, num_canceled, num_failed):
        self.events.append(("end_array", owner_id, job_id, array_index, num_ended, num_canceled, num_failed))

    async def on_end(self, owner_id, job_id, result_type):
        self.events.append(("end", owner_id, job_id, result_type))

    def named(self, name: str) -> List[tuple]:
        return [e for e in self.events if e[0] == name]


class RecordingOwner(OwnerListener):

    def __init__(self, listener_id: str = "stage-listener"):
        self._id = listener_id
        self.calls: List[Tuple[str, ResultType]] = []

    @property
    def id(self) -> str:
        return self._id

    async def ended(self, owner_id, result_type):
        self.calls.append((owner_id, result_type))


class Env:
    """Orchestrator plus its doubles."""

    def __init__(self, tmp_path: Path):
        self.config = CommandsConfig(shared_dir=tmp_path / "shared", webhost="http://web:8000")
        self.store = MemoryClusterJobStore()
        self.backend = ScriptedBackend(self.config, self.store)
        self.registry = ListenerRegistry()
        self.listener = RecordingListener()
        self.registry.add_listener(self.listener)
        self.stream_log = AsyncMock(spec=StreamLog)
        self.orchestrator = ClusterOrchestrator(
            self.store, self.backend, self.registry, self.stream_log, self.config
        )


@pytest.fixture
def env(tmp_path):
    return Env(tmp_path)


def _job(array_size=None, owner_id=None, owner_listener_id=None, deps=None, **kwargs):
    return ClusterJob(
        commands=CommandsScript(commands=["echo hi"], array_size=array_size),
        dir=Path("/data/project"),
        owner_id=owner_id,
        owner_listener_id=owner_listener_id,
        deps=deps or [],
        **kwargs,
    )


def _statuses(log) -> List[JobStatus]:
    return [entry.status for entry in log.history]


# ============================================================================
# HELPERS
# ============================================================================

class TestHelpers:

    def test_split_dependency(self):
        assert split_dependency("abc_4") == ("abc", "4")
        assert split_dependency("abc") == ("abc", None)

    def test_round_key_ignores_order(self):
        assert owner_round_key(["b", "a"]) == owner_round_key(["a", "b"])
        assert owner_round_key(["a"]) != owner_round_key(["a", "b"])

    def test_reduce_result_types(self):
        assert reduce_result_types([]) is None
        assert reduce_result_types([ResultType.SUCCESS, ResultType.SUCCESS]) == ResultType.SUCCESS
        assert reduce_result_types(
            [ResultType.SUCCESS, ResultType.CANCELED, ResultType.FAILURE]
        ) == ResultType.CANCELED


# ============================================================================
# SUBMIT
# ============================================================================

class TestSubmit:

    def test_submit_launches_and_records(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job())

            assert job_id is not None
            log = await env.store.get_log(job_id)
            assert _statuses(log) == [JobStatus.SUBMITTED, JobStatus.LAUNCHED]
            assert log.launch_result.job_id == 101

            launched_job, dep_ids, script_path = env.backend.launched[0]
            assert launched_job.job_id == job_id
            assert dep_ids == []
            assert script_path == env.config.batch_dir / f"batch-{job_id}.sh"

            script = script_path.read_text()
            assert f'export CLUSTERJOB_WEBID="{job_id}"' in script
            assert "cd /tmp || exit 1" in script
            assert (env.config.batch_dir / f"commands-script-{job_id}.sh").exists()
            assert env.config.log_dir.is_dir()

            assert env.listener.named("submit") == [("submit", job_id)]

        asyncio.run(run_test())

    def test_resubmit_fails_without_mutation(self, env):
        async def run_test():
            job = _job(owner_id="o1").model_copy(update={"job_id": "already"})
            with pytest.raises(JobStateError):
                await env.orchestrator.submit(job)
            assert await env.store.get_jobs_by_owner("o1") == []
            assert env.listener.events == []

        asyncio.run(run_test())

    def test_unregistered_owner_listener_fails_fast(self, env):
        async def run_test():
            with pytest.raises(JobStateError, match="not registered"):
                await env.orchestrator.submit(_job(owner_id="o1", owner_listener_id="nobody"))
            assert await env.store.get_jobs_by_owner("o1") == []

        asyncio.run(run_test())

    def test_validation_happens_before_persistence(self, env):
        async def run_test():
            env.backend.validation_error = ValidationFailedError("bad args")
            with pytest.raises(ValidationFailedError):
                await env.orchestrator.submit(_job(owner_id="o1"))
            assert await env.store.get_jobs_by_owner("o1") == []

        asyncio.run(run_test())

    def test_unknown_container_profile_is_validation_error(self, env):
        async def run_test():
            with pytest.raises(ValidationFailedError, match="unknown container profile"):
                await env.orchestrator.submit(_job(owner_id="o1", container_id="nope"))
            assert await env.store.get_jobs_by_owner("o1") == []

        asyncio.run(run_test())

    def test_dependencies_resolve_to_native_ids(self, env):
        async def run_test():
            dep_id = await env.orchestrator.submit(_job())
            await env.orchestrator.submit(_job(deps=[f"{dep_id}_4", dep_id]))

            _, dep_ids, _ = env.backend.launched[1]
            assert dep_ids == ["101_4", "101"]

        asyncio.run(run_test())

    def test_unlaunched_dependency_fails_and_finalizes(self, env):
        async def run_test():
            env.backend.launch_nothing = True
            dep_id = await env.orchestrator.submit(_job(owner_id="o1"))
            assert dep_id is None
            [dep_job] = await env.store.get_jobs_by_owner("o1")

            env.backend.launch_nothing = False
            with pytest.raises(JobStateError, match="not launched"):
                await env.orchestrator.submit(_job(owner_id="o2", deps=[dep_job.job_id]))

            [job] = await env.store.get_jobs_by_owner("o2")
            log = await env.store.get_log(job.job_id)
            assert log.status() == JobStatus.ENDED
            assert log.submit_failure == "Internal Error"
            assert ("end", "o2", job.job_id, ResultType.FAILURE) in env.listener.events

        asyncio.run(run_test())

    def test_launch_failure_finalizes_and_reraises(self, env):
        async def run_test():
            env.backend.launch_error = LaunchFailedError(
                "unable to read job id from sbatch output",
                console=["sbatch: error: invalid partition", "bye"],
                command="sbatch launch.sh",
            )
            with pytest.raises(LaunchFailedError):
                await env.orchestrator.submit(_job(owner_id="o1", array_size=3))

            [job] = await env.store.get_jobs_by_owner("o1")
            log = await env.store.get_log(job.job_id)
            assert _statuses(log) == [JobStatus.SUBMITTED, JobStatus.ENDED]
            assert log.launch_result.job_id is None
            assert log.launch_result.out == "sbatch: error: invalid partition\nbye"
            assert log.launch_result.command == "sbatch launch.sh"

            assert env.listener.named("end") == [("end", "o1", job.job_id, ResultType.FAILURE)]
            assert env.listener.named("start_array") == [("start_array", "o1", job.job_id, 0, 3)]
            assert env.listener.named("end_array") == [("end_array", "o1", job.job_id, 0, 3, 0, 3)]

        asyncio.run(run_test())

    def test_backend_validation_error_on_launch_stores_reason(self, env):
        async def run_test():
            env.backend.launch_error = ValidationFailedError("template exploded")
            with pytest.raises(ValidationFailedError):
                await env.orchestrator.submit(_job(owner_id="o1"))
            [job] = await env.store.get_jobs_by_owner("o1")
            log = await env.store.get_log(job.job_id)
            assert log.submit_failure == "template exploded"

        asyncio.run(run_test())

    def test_launch_nothing_returns_none(self, env):
        async def run_test():
            env.backend.launch_nothing = True
            assert await env.orchestrator.submit(_job(owner_id="o1")) is None
            [job] = await env.store.get_jobs_by_owner("o1")
            log = await env.store.get_log(job.job_id)
            assert log.status() == JobStatus.SUBMITTED

        asyncio.run(run_test())

    @pytest.mark.parametrize("commands", [
        CommandsGrid(commands=[]),
        CommandsScript(commands=["echo hi"], array_size=0),
    ])
    def test_empty_array_launches_nothing(self, env, commands):
        async def run_test():
            job = ClusterJob(commands=commands, dir=Path("/data/project"), owner_id="o1")
            assert await env.orchestrator.submit(job) is None

            assert env.backend.launched == []
            [stored] = await env.store.get_jobs_by_owner("o1")
            log = await env.store.get_log(stored.job_id)
            assert _statuses(log) == [JobStatus.SUBMITTED]
            assert log.launch_result is None
            assert not stored.batch_path(env.config.batch_dir).exists()
            assert env.listener.named("end") == []

        asyncio.run(run_test())

    def test_failing_listener_does_not_break_submit(self, env):
        class Broken(ClusterJobListener):
            async def on_submit(self, job):
                raise RuntimeError("listener bug")

        async def run_test():
            env.registry.add_listener(Broken())
            assert await env.orchestrator.submit(_job()) is not None

        asyncio.run(run_test())


# ============================================================================
# STARTED / ENDED
# ============================================================================

class TestStartedEnded:

    def test_single_job_happy_path(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.started(job_id)
            await env.orchestrator.ended(job_id, None, 0)
            await env.orchestrator.drain()

            log = await env.store.get_log(job_id)
            assert _statuses(log) == [
                JobStatus.SUBMITTED, JobStatus.LAUNCHED, JobStatus.STARTED, JobStatus.ENDED,
            ]
            assert log.result.type == ResultType.SUCCESS
            assert log.result.exit_code == 0
            assert env.listener.named("start") == [("start", "o1", job_id)]
            assert env.listener.named("end") == [("end", "o1", job_id, ResultType.SUCCESS)]
            env.stream_log.end.assert_awaited_once()

            # cleanup removed the generated scripts
            assert not (env.config.batch_dir / f"batch-{job_id}.sh").exists()
            assert not (env.config.batch_dir / f"commands-script-{job_id}.sh").exists()

        asyncio.run(run_test())

    def test_nonzero_exit_code_fails(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job())
            await env.orchestrator.started(job_id)
            await env.orchestrator.ended(job_id, None, 3)

            log = await env.store.get_log(job_id)
            assert log.result.type == ResultType.FAILURE
            assert log.result.exit_code == 3

        asyncio.run(run_test())

    def test_exit_code_zero_keeps_canceled(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job())
            env.backend.results[(job_id, None)] = JobResult(type=ResultType.CANCELED, cancel_reason="DUE TO TIME LIMIT")
            await env.orchestrator.started(job_id)
            await env.orchestrator.ended(job_id, None, 0)

            log = await env.store.get_log(job_id)
            assert log.result.type == ResultType.CANCELED
            assert log.result.exit_code == 0

        asyncio.run(run_test())

    def test_failure_entry_forces_failure(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job())
            await env.orchestrator.started(job_id)
            await env.orchestrator.record_failure(job_id, None, "node stopped responding")
            await env.orchestrator.ended(job_id, None, 0)

            log = await env.store.get_log(job_id)
            assert log.result.type == ResultType.FAILURE
            assert log.failures[0].reason == "node stopped responding"

        asyncio.run(run_test())

    def test_duplicate_end_is_ignored(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job())
            await env.orchestrator.started(job_id)
            await env.orchestrator.ended(job_id, None, 0)
            await env.orchestrator.ended(job_id, None, 1)

            log = await env.store.get_log(job_id)
            assert _statuses(log).count(JobStatus.ENDED) == 1
            assert log.result.type == ResultType.SUCCESS
            assert len(env.listener.named("end")) == 1

        asyncio.run(run_test())

    def test_unknown_job(self, env):
        async def run_test():
            with pytest.raises(JobNotFoundError):
                await env.orchestrator.started("missing")
            with pytest.raises(JobNotFoundError):
                await env.orchestrator.ended("missing", None, 0)

        asyncio.run(run_test())

    def test_array_index_must_match_job_kind(self, env):
        async def run_test():
            single = await env.orchestrator.submit(_job())
            array = await env.orchestrator.submit(_job(array_size=2))
            with pytest.raises(JobStateError):
                await env.orchestrator.started(single, 1)
            with pytest.raises(JobStateError):
                await env.orchestrator.started(array, None)

        asyncio.run(run_test())

    def test_array_job_events(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1", array_size=3))
            env.backend.results[(job_id, 2)] = JobResult(type=ResultType.SUCCESS, out="boom")

            await env.orchestrator.started(job_id, 1)
            await env.orchestrator.started(job_id, 2)
            assert env.listener.named("start") == [("start", "o1", job_id)]
            assert len(env.listener.named("start_array")) == 2

            await env.orchestrator.ended(job_id, 1, 0)
            await env.orchestrator.ended(job_id, 2, 1)
            await env.orchestrator.ended(job_id, 3, 0)

            parent = await env.store.get_log(job_id)
            assert parent.array_progress.num_started == 2
            assert parent.array_progress.num_ended == 3
            assert parent.array_progress.num_failed == 1
            assert parent.array_progress.num_canceled == 0
            assert _statuses(parent).count(JobStatus.ENDED) == 1
            assert env.listener.named("end") == [("end", "o1", job_id, ResultType.FAILURE)]

            element = await env.store.get_log(job_id, 2)
            assert element.result.type == ResultType.FAILURE
            assert element.result.exit_code == 1

            # only the first element feeds the stream log
            env.stream_log.end.assert_awaited_once()
            assert env.stream_log.end.await_args.args[0] == job_id

        asyncio.run(run_test())

    def test_array_job_concurrent_ends(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1", array_size=3))
            await asyncio.gather(*[env.orchestrator.started(job_id, i) for i in (1, 2, 3)])
            await asyncio.gather(
                env.orchestrator.ended(job_id, 3, 0),
                env.orchestrator.ended(job_id, 1, 0),
                env.orchestrator.ended(job_id, 2, 0),
            )

            parent = await env.store.get_log(job_id)
            assert parent.array_progress.num_ended == 3
            assert _statuses(parent).count(JobStatus.STARTED) == 1
            assert _statuses(parent).count(JobStatus.ENDED) == 1
            assert len(env.listener.named("start")) == 1
            assert env.listener.named("end") == [("end", "o1", job_id, ResultType.SUCCESS)]
            assert parent.result.type == ResultType.SUCCESS

        asyncio.run(run_test())


# ============================================================================
# CANCEL
# ============================================================================

class TestCancelAll:

    def test_unknown_owner(self, env):
        async def run_test():
            assert await env.orchestrator.cancel_all("nobody") == CancelResult.UNKNOWN_JOB

        asyncio.run(run_test())

    def test_submitted_job_finalizes_without_backend(self, env):
        async def run_test():
            env.backend.launch_nothing = True
            await env.orchestrator.submit(_job(owner_id="o1"))
            [job] = await env.store.get_jobs_by_owner("o1")

            assert await env.orchestrator.cancel_all("o1") == CancelResult.ALL_CANCELED

            log = await env.store.get_log(job.job_id)
            assert _statuses(log) == [JobStatus.SUBMITTED, JobStatus.CANCELING, JobStatus.ENDED]
            assert env.backend.canceled == []
            assert env.listener.named("end") == [("end", "o1", job.job_id, ResultType.CANCELED)]

        asyncio.run(run_test())

    def test_launched_job_finalizes_and_cancels(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))

            assert await env.orchestrator.cancel_all("o1") == CancelResult.ALL_CANCELED

            log = await env.store.get_log(job_id)
            assert _statuses(log)[-2:] == [JobStatus.CANCELING, JobStatus.ENDED]
            assert env.backend.canceled == [[job_id]]

        asyncio.run(run_test())

    def test_started_job_waits_for_end(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.started(job_id)

            assert await env.orchestrator.cancel_all("o1") == CancelResult.CANCEL_REQUESTED

            log = await env.store.get_log(job_id)
            assert log.status() == JobStatus.CANCELING
            assert not log.is_terminal()
            assert env.backend.canceled == [[job_id]]
            assert env.listener.named("end") == []

            env.backend.results[(job_id, None)] = JobResult(type=ResultType.CANCELED)
            await env.orchestrator.ended(job_id, None, 130)

            log = await env.store.get_log(job_id)
            assert log.status() == JobStatus.ENDED
            assert log.result.type == ResultType.CANCELED
            assert env.listener.named("end") == [("end", "o1", job_id, ResultType.CANCELED)]

        asyncio.run(run_test())

    def test_second_cancel_abandons(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.started(job_id)
            await env.orchestrator.cancel_all("o1")

            assert await env.orchestrator.cancel_all("o1") == CancelResult.ALL_CANCELED

            log = await env.store.get_log(job_id)
            assert log.status() == JobStatus.ABANDONED
            assert len(env.backend.canceled) == 1

        asyncio.run(run_test())

    def test_mixed_submitted_and_started(self, env):
        async def run_test():
            started_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.started(started_id)
            env.backend.launch_nothing = True
            await env.orchestrator.submit(_job(owner_id="o1"))

            assert await env.orchestrator.cancel_all("o1") == CancelResult.CANCEL_REQUESTED

            logs = {job.job_id: await env.store.get_log(job.job_id) for job in await env.store.get_jobs_by_owner("o1")}
            submitted_id = next(job_id for job_id in logs if job_id != started_id)
            assert logs[submitted_id].status() == JobStatus.ENDED
            assert logs[started_id].status() == JobStatus.CANCELING

        asyncio.run(run_test())

    def test_late_end_after_cancel_is_ignored(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.cancel_all("o1")
            await env.orchestrator.ended(job_id, None, 0)

            log = await env.store.get_log(job_id)
            assert _statuses(log).count(JobStatus.ENDED) == 1
            assert log.result is None
            assert len(env.listener.named("end")) == 1

        asyncio.run(run_test())

    def test_cancel_during_launch_keeps_job_ended(self, env):
        async def run_test():
            owner = RecordingOwner()
            env.registry.add_owner_listener(owner)
            env.backend.launch_gate = asyncio.Event()
            env.backend.launch_entered = asyncio.Event()

            submit = asyncio.create_task(
                env.orchestrator.submit(_job(owner_id="o1", owner_listener_id=owner.id))
            )
            await env.backend.launch_entered.wait()

            assert await env.orchestrator.cancel_all("o1") == CancelResult.ALL_CANCELED
            env.backend.launch_gate.set()
            assert await submit is None

            [job] = await env.store.get_jobs_by_owner("o1")
            log = await env.store.get_log(job.job_id)
            assert _statuses(log) == [JobStatus.SUBMITTED, JobStatus.CANCELING, JobStatus.ENDED]
            # the native job exists, so the backend is told to cancel it
            assert log.launch_result.job_id == 101
            assert env.backend.canceled == [[job.job_id]]

            # callbacks from the native job arrive anyway and change nothing
            await env.orchestrator.started(job.job_id)
            await env.orchestrator.ended(job.job_id, None, 0)
            await env.orchestrator.drain()

            log = await env.store.get_log(job.job_id)
            assert _statuses(log) == [JobStatus.SUBMITTED, JobStatus.CANCELING, JobStatus.ENDED]
            assert env.listener.named("end") == [("end", "o1", job.job_id, ResultType.CANCELED)]
            assert env.listener.named("start") == []
            assert owner.calls == [("o1", ResultType.CANCELED)]

        asyncio.run(run_test())

    def test_cancel_during_array_launch(self, env):
        async def run_test():
            env.backend.launch_gate = asyncio.Event()
            env.backend.launch_entered = asyncio.Event()

            submit = asyncio.create_task(env.orchestrator.submit(_job(array_size=3, owner_id="o1")))
            await env.backend.launch_entered.wait()
            await env.orchestrator.cancel_all("o1")
            env.backend.launch_gate.set()
            assert await submit is None

            [job] = await env.store.get_jobs_by_owner("o1")
            assert (await env.store.get_log(job.job_id)).status() == JobStatus.ENDED
            assert env.backend.canceled == [[job.job_id]]

            # a late element end is recorded but cannot end the job again
            await env.orchestrator.ended(job.job_id, 1, 0)
            log = await env.store.get_log(job.job_id)
            assert _statuses(log).count(JobStatus.ENDED) == 1
            assert len(env.listener.named("end")) == 1

        asyncio.run(run_test())

    def test_all_canceled_notifies_owner_once(self, env):
        async def run_test():
            owner = RecordingOwner()
            env.registry.add_owner_listener(owner)
            await env.orchestrator.submit(_job(owner_id="o1", owner_listener_id=owner.id))
            await env.orchestrator.submit(_job(owner_id="o1", owner_listener_id=owner.id))

            assert await env.orchestrator.cancel_all("o1") == CancelResult.ALL_CANCELED
            await env.orchestrator.cancel_all("o1")

            assert owner.calls == [("o1", ResultType.CANCELED)]

        asyncio.run(run_test())


# ============================================================================
# OWNER NOTIFICATION
# ============================================================================

class TestOwnerNotification:

    def test_latest_job_decides(self, env):
        async def run_test():
            owner = RecordingOwner()
            env.registry.add_owner_listener(owner)
            first = await env.orchestrator.submit(_job(owner_id="o1", owner_listener_id=owner.id))
            second = await env.orchestrator.submit(_job(owner_id="o1", owner_listener_id=owner.id))

            await env.orchestrator.started(first)
            await env.orchestrator.started(second)
            await env.orchestrator.ended(second, None, 0)
            assert owner.calls == []

            await asyncio.sleep(0.01)
            await env.orchestrator.ended(first, None, 2)

            assert owner.calls == [("o1", ResultType.FAILURE)]

        asyncio.run(run_test())

    def test_array_job_aggregates_elements(self, env):
        async def run_test():
            owner = RecordingOwner()
            env.registry.add_owner_listener(owner)
            job_id = await env.orchestrator.submit(_job(owner_id="o1", owner_listener_id=owner.id, array_size=2))
            env.backend.results[(job_id, 2)] = JobResult(type=ResultType.CANCELED)

            for index in (1, 2):
                await env.orchestrator.started(job_id, index)
                await env.orchestrator.ended(job_id, index, 0)

            assert owner.calls == [("o1", ResultType.CANCELED)]

        asyncio.run(run_test())

    def test_no_listener_no_notification(self, env):
        async def run_test():
            owner = RecordingOwner()
            env.registry.add_owner_listener(owner)
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.started(job_id)
            await env.orchestrator.ended(job_id, None, 0)
            assert owner.calls == []

        asyncio.run(run_test())


# ============================================================================
# INSPECTION / DELETE
# ============================================================================

class TestInspection:

    def test_waiting_reasons(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job())
            assert "cluster is not aware" in await env.orchestrator.waiting_reason(job_id)

            env.backend.reason = "Job has been submitted to SLURM. The SLURM status is: Priority"
            assert await env.orchestrator.waiting_reason(job_id) == env.backend.reason

            await env.orchestrator.started(job_id)
            assert await env.orchestrator.waiting_reason(job_id) == "Job is no longer waiting, it has started"

            idle_id = (await env.store.create_job(_job())).job_id
            assert await env.orchestrator.waiting_reason(idle_id) == "Unknown reason, no job log was found"

            with pytest.raises(JobNotFoundError):
                await env.orchestrator.waiting_reason("missing")

        asyncio.run(run_test())

    def test_job_log_data_lists_failed_elements(self, env):
        async def run_test():
            job = ClusterJob(
                commands=CommandsGrid(commands=[["a"], ["b1", "b2"], ["c"]]),
                dir=Path("/data/project"),
                web_name="grid job",
            )
            job_id = await env.orchestrator.submit(job)
            for index in (1, 2, 3):
                await env.orchestrator.started(job_id, index)
                await env.orchestrator.ended(job_id, index, 1 if index == 3 else 0)

            data = await env.orchestrator.job_log_data(job_id)
            assert data["name"] == "grid job"
            assert data["array_size"] == 3
            assert data["failed_array_indices"] == [3]
            assert data["commands"] == [["a"], ["b1", "b2"], ["c"]]
            assert data["status"] == "ended"
            assert data["run_status"] == "failed"

            element = await env.orchestrator.job_log_data(job_id, 3)
            assert element["exit_code"] == 1
            assert element["out"] == "ok"

        asyncio.run(run_test())

    def test_delete(self, env):
        async def run_test():
            job_id = await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.submit(_job(owner_id="o1"))
            await env.orchestrator.submit(_job(owner_id="o2"))

            await env.orchestrator.delete(job_id)
            assert await env.store.get_job(job_id) is None
            assert await env.store.get_log(job_id) is None
            with pytest.raises(JobNotFoundError):
                await env.orchestrator.delete(job_id)

            assert await env.orchestrator.delete_all_many(["o1", "o2"]) == 2
            assert await env.store.get_jobs_by_owner("o1") == []

        asyncio.run(run_test())
