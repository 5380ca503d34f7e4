# ============================================================================
# STANDALONE BACKEND (PSEUDO-CLUSTER)
# ============================================================================
# STATUS: Backend - Local machine acting like a small SLURM cluster
# PURPOSE: Queue, schedule and run cluster jobs as local subprocesses
# CREATED: 14 MAR 2026
# ============================================================================
"""
Standalone Backend

Not a real cluster, but acts like one using only the resources of the
local machine. Jobs are split into tasks (one per array element, 1-based,
or one task for a non-array job) and started in FIFO order once:

    - every dependency has finished (whole job, or the named array task)
    - enough CPUs, memory (GiB) and GPUs are free

Started tasks get the SLURM environment variables the job scripts expect
(SLURM_JOB_ID, SLURM_ARRAY_TASK_ID, SLURM_CPUS_PER_TASK, ...) and
CUDA_VISIBLE_DEVICES restricted to the GPUs reserved for them.

A task is finished when its job result is read, which happens when the
task's ended callback reaches the orchestrator.

Canceling sends SIGINT to the task's process group, then SIGKILL if the
process is still alive after the grace period.
"""

import asyncio
import logging
import os
import random
import shlex
import signal
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from core.config.defaults import StandaloneDefaults
from core.contracts import ClusterMode, ResultType
from core.errors import ValidationFailedError
from core.gres import Gres, requested_gpus
from core.models import ClusterJob, JobResult, LaunchResult
from orchestrator.engine.commands import CommandsConfig
from repositories.base import ClusterJobStore
from backends.base import ClusterBackend

logger = logging.getLogger(__name__)


class ResourceType(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"
    GPU = "gpu"


class WaitingReason(Enum):
    DEPENDENCY = "The job is waiting for another job to finish"
    RESOURCES = "The job is waiting for more resources to become available"


@dataclass
class Resource:
    """A pool of one resource type."""
    type: ResourceType
    total: int
    available: int = 0

    def __post_init__(self):
        self.available = self.total

    def is_available(self, num: int) -> bool:
        return self.available >= num

    def reserve(self, num: int) -> Tuple[ResourceType, int]:
        self.available -= num
        return (self.type, num)

    def release(self, num: int) -> None:
        self.available += num


def _parse_cpus(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        logger.warning(f"--cpus-per-task value unrecognizable: {value}")
        return None


def _parse_mem_gib(value: str) -> Optional[int]:
    # only whole GiB, e.g. --mem=5G
    if value[-1:] in ("G", "g"):
        try:
            return int(value[:-1])
        except ValueError:
            pass
    logger.warning(f"--mem value unrecognizable: {value}")
    return None


# ============================================================================
# JOBS AND TASKS
# ============================================================================

class _Task:

    def __init__(self, job: "_Job", task_id: int, array_id: Optional[int], out_path: Path):
        self.job = job
        self.task_id = task_id
        self.array_id = array_id
        self.out_path = out_path
        self.started = False
        self.finished = False
        self.canceled = False
        self.process: Optional[asyncio.subprocess.Process] = None
        self.reservations: List[Tuple[ResourceType, int]] = []
        self.reserved_gpus: List[int] = []


class _Job:

    def __init__(
        self,
        launch_id: int,
        cluster_job: ClusterJob,
        dep_ids: List[str],
        script_path: Path,
        log_dir: Path,
    ):
        self.launch_id = launch_id
        self.cluster_job = cluster_job
        self.dep_ids = list(dep_ids)
        self.script_path = script_path
        self.created = time.monotonic()
        self.canceled = False

        self.num_cpus: Optional[int] = None
        self.mem_gib: Optional[int] = None
        self.num_gpus: Optional[int] = None
        for name, value in cluster_job.args_parsed:
            if name == "cpus-per-task" and self.num_cpus is None:
                self.num_cpus = _parse_cpus(value)
            elif name == "mem" and self.mem_gib is None:
                self.mem_gib = _parse_mem_gib(value)
            elif name == "gres" and self.num_gpus is None:
                self.num_gpus = requested_gpus(value)

        self.requested: List[Tuple[ResourceType, int]] = []
        if self.num_cpus is not None:
            self.requested.append((ResourceType.CPU, self.num_cpus))
        if self.mem_gib is not None:
            self.requested.append((ResourceType.MEMORY, self.mem_gib))
        if self.num_gpus is not None:
            self.requested.append((ResourceType.GPU, self.num_gpus))

        # 1-based array ids, like SLURM
        array_size = cluster_job.array_size
        if array_size is not None:
            self.tasks = [
                _Task(self, i, i + 1, cluster_job.out_path(log_dir, i + 1))
                for i in range(array_size)
            ]
        else:
            self.tasks = [_Task(self, 0, None, cluster_job.out_path(log_dir))]
        self.tasks_by_array_id: Dict[Optional[int], _Task] = {t.array_id: t for t in self.tasks}


class StandaloneBackend(ClusterBackend):
    """Runs cluster jobs on the local machine."""

    cluster_mode = ClusterMode.STANDALONE

    def __init__(
        self,
        config: StandaloneDefaults,
        commands_config: CommandsConfig,
        store: ClusterJobStore,
    ):
        super().__init__(commands_config, store)
        self.config = config
        self._lock = asyncio.Lock()
        self._jobs: Dict[int, _Job] = {}
        self._finished_job_ids: Set[int] = set()
        # dicts keep insertion order, so this is a FIFO queue
        self._tasks_waiting: Dict[_Task, None] = {}
        self._tasks_running: Set[_Task] = set()
        self._resources = {
            ResourceType.CPU: Resource(ResourceType.CPU, config.cpus),
            ResourceType.MEMORY: Resource(ResourceType.MEMORY, config.memory_gib),
            ResourceType.GPU: Resource(ResourceType.GPU, config.gpus),
        }
        self._gpus: List[int] = list(range(config.gpus))
        self._background: Set[asyncio.Task] = set()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self, job: ClusterJob) -> None:
        for name, value in job.args_parsed:
            if name == "gres":
                try:
                    Gres.parse_all(value)
                except ValueError as e:
                    raise ValidationFailedError(str(e)) from e

    def validate_dependency(self, dep_id: str) -> None:
        head, _, tail = dep_id.partition("_")
        if not head.isdigit() or (tail and not tail.isdigit()):
            raise ValidationFailedError(f"invalid dependency id: {dep_id}")

    # =========================================================================
    # LAUNCH
    # =========================================================================

    async def launch(
        self,
        job: ClusterJob,
        dep_ids: List[str],
        script_path: Path,
    ) -> Optional[LaunchResult]:
        async with self._lock:
            launch_id = self._next_id()
            local_job = _Job(launch_id, job, dep_ids, script_path, self.commands_config.log_dir)
            self._jobs[launch_id] = local_job
            for task in local_job.tasks:
                self._tasks_waiting[task] = None
            await self._maybe_start_tasks()

        logger.info(f"Cluster job {job.job_id} queued locally as {launch_id}")
        return LaunchResult(job_id=launch_id, out="", command=None)

    def _next_id(self) -> int:
        for _ in range(100):
            launch_id = random.randint(1, 2**63 - 1)
            if launch_id not in self._jobs and launch_id not in self._finished_job_ids:
                return launch_id
        raise RuntimeError("Ran out of launch ids")

    # =========================================================================
    # SCHEDULING (call with the lock held)
    # =========================================================================

    def _dependency_satisfied(self, dep_id: str) -> bool:
        head, _, tail = dep_id.partition("_")
        launch_id = int(head)
        if launch_id in self._finished_job_ids:
            return True
        if tail:
            dep_job = self._jobs.get(launch_id)
            if dep_job is None:
                return False
            task = dep_job.tasks_by_array_id.get(int(tail))
            # a missing task can never be satisfied
            return task is not None and task.finished
        return False

    def _task_waiting_reason(self, task: _Task) -> Optional[WaitingReason]:
        if task.started:
            return None
        for dep_id in task.job.dep_ids:
            if not self._dependency_satisfied(dep_id):
                return WaitingReason.DEPENDENCY
        for resource_type, requested in task.job.requested:
            if not self._resources[resource_type].is_available(requested):
                return WaitingReason.RESOURCES
        return None

    def _task_waiting_name(self, task: _Task) -> Optional[str]:
        reason = self._task_waiting_reason(task)
        return reason.name if reason is not None else None

    def _job_waiting_reason(self, job: _Job) -> str:
        first = job.tasks[0]
        if first.started:
            if first.process is not None:
                return f"The job is running under PID {first.process.pid}"
            return "The job has been submitted and should start running soon"

        reason = self._task_waiting_reason(first)
        if reason is not None:
            return reason.value

        if job.canceled:
            return "The job has been canceled and will not start"

        return "The job has not been started yet, but is eligible to be started"

    async def _maybe_start_tasks(self) -> None:
        while self._tasks_waiting:
            task = next(iter(self._tasks_waiting))
            if task.canceled or task.job.canceled or self._task_waiting_reason(task) is not None:
                break

            for resource_type, requested in task.job.requested:
                task.reservations.append(self._resources[resource_type].reserve(requested))
            for _ in range(task.job.num_gpus or 0):
                if not self._gpus:
                    raise RuntimeError("No individual GPU available, even though the GPU pool has one")
                task.reserved_gpus.append(self._gpus.pop(0))

            del self._tasks_waiting[task]
            self._tasks_running.add(task)
            await self._start(task)

    async def _start(self, task: _Task) -> None:
        job = task.job
        cluster_job = job.cluster_job
        task.started = True

        env = dict(os.environ)
        env["SLURM_SUBMIT_DIR"] = str(cluster_job.dir)
        env["SLURM_JOB_ID"] = str(job.launch_id)
        if task.array_id is not None:
            env["SLURM_ARRAY_JOB_ID"] = str(job.launch_id)
            env["SLURM_ARRAY_TASK_ID"] = str(task.array_id)
        if job.num_cpus is not None:
            env["SLURM_CPUS_PER_TASK"] = str(job.num_cpus)
        if job.mem_gib is not None:
            env["SBATCH_MEM_PER_NODE"] = f"{job.mem_gib}G"
        if job.num_gpus is not None:
            env["SBATCH_GRES"] = f"gpu:{job.num_gpus}"
            env["CUDA_VISIBLE_DEVICES"] = ",".join(str(gpu) for gpu in task.reserved_gpus)
        for var in cluster_job.env:
            env[var.name] = var.value

        shell = f"{shlex.quote(str(job.script_path))} > {shlex.quote(str(task.out_path))} 2>&1"
        try:
            task.process = await asyncio.create_subprocess_exec(
                "/bin/bash", "-c", shell,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start job {job.launch_id} task {task.task_id}: {e}")
            return

        logger.debug(f"Started job {job.launch_id} task {task.task_id} as PID {task.process.pid}")
        self._spawn(task.process.wait())

    def _release(self, task: _Task) -> None:
        for resource_type, num in task.reservations:
            self._resources[resource_type].release(num)
        task.reservations.clear()
        self._gpus.extend(task.reserved_gpus)
        task.reserved_gpus.clear()

    async def _task_finished(self, task: _Task) -> None:
        task.finished = True
        self._tasks_running.discard(task)
        self._release(task)

        job = task.job
        if all(t.finished for t in job.tasks):
            self._jobs.pop(job.launch_id, None)
            self._finished_job_ids.add(job.launch_id)

        await self._maybe_start_tasks()

    def _remove_jobs(self, jobs: List[_Job]) -> None:
        for job in jobs:
            for task in job.tasks:
                self._tasks_waiting.pop(task, None)
                self._tasks_running.discard(task)
                self._release(task)
            self._jobs.pop(job.launch_id, None)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # =========================================================================
    # CANCEL / STATUS / RESULTS
    # =========================================================================

    async def _find_job(self, cluster_job: ClusterJob) -> Optional[_Job]:
        log = await self.store.get_log(cluster_job.id_or_raise)
        if log is None or log.launch_result is None or log.launch_result.job_id is None:
            return None
        async with self._lock:
            return self._jobs.get(log.launch_result.job_id)

    async def cancel(self, jobs: List[ClusterJob]) -> None:
        found: List[_Job] = []
        for cluster_job in jobs:
            job = await self._find_job(cluster_job)
            if job is not None:
                found.append(job)

        async with self._lock:
            # flag everything first, so nothing canceled gets started
            for job in found:
                job.canceled = True
                for task in job.tasks:
                    task.canceled = True
            self._remove_jobs(found)

        for job in found:
            for task in job.tasks:
                process = task.process
                if task.finished or process is None or process.returncode is not None:
                    continue
                logger.debug(f"Asking job {job.launch_id} task {task.task_id} to exit nicely")
                self._signal(process, signal.SIGINT)
                self._spawn(self._kill_later(job, task, process))

        async with self._lock:
            await self._maybe_start_tasks()

    def _signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        # shells don't forward SIGINT, so signal the whole process group
        try:
            os.killpg(os.getpgid(process.pid), sig)
        except ProcessLookupError:
            pass

    async def _kill_later(self, job: _Job, task: _Task, process: asyncio.subprocess.Process) -> None:
        await asyncio.sleep(self.config.cancel_grace_seconds)
        if process.returncode is None:
            logger.warning(
                f"Job {job.launch_id} task {task.task_id} didn't exit after asking nicely, killing it"
            )
            self._signal(process, signal.SIGKILL)
        else:
            logger.debug(f"Job {job.launch_id} task {task.task_id} exited after asking nicely")

    async def waiting_reason(self, job: ClusterJob, launch_result: LaunchResult) -> Optional[str]:
        if launch_result.job_id is None:
            return None
        async with self._lock:
            if launch_result.job_id in self._finished_job_ids:
                return "The job has finished"
            local_job = self._jobs.get(launch_result.job_id)
            if local_job is None:
                return None
            return self._job_waiting_reason(local_job)

    async def job_result(self, job: ClusterJob, array_index: Optional[int]) -> JobResult:
        out = await self.read_output(job, array_index)

        local_job = await self._find_job(job)
        if local_job is None:
            # restarted server, or a canceled job we already forgot about
            return JobResult(type=ResultType.CANCELED, out=out)

        task = local_job.tasks_by_array_id.get(array_index)
        if task is None:
            raise KeyError(f"task for array={array_index} wasn't found in job {local_job.launch_id}")

        async with self._lock:
            await self._task_finished(task)

        if local_job.canceled:
            return JobResult(type=ResultType.CANCELED, out=out)
        return JobResult(type=ResultType.SUCCESS, out=out)

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def state(self) -> Dict[str, Any]:
        """Snapshot of resources, jobs and queues."""
        async with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created)
            running = sorted(self._tasks_running, key=lambda t: (t.job.created, t.task_id))
            return {
                "resources": [
                    {"name": r.type.value, "available": r.available, "total": r.total}
                    for r in sorted(self._resources.values(), key=lambda r: r.type.value)
                ],
                "available_gpus": list(self._gpus),
                "jobs": [
                    {
                        "standalone_id": job.launch_id,
                        "cluster_id": job.cluster_job.job_id,
                        "owner_id": job.cluster_job.owner_id,
                        "name": job.cluster_job.cluster_name,
                        "resources": [(t.value, n) for t, n in job.requested],
                        "tasks": [
                            {
                                "task_id": task.task_id,
                                "array_id": task.array_id,
                                "resources": {t.value: n for t, n in task.reservations},
                                "reserved_gpus": list(task.reserved_gpus),
                                "pid": task.process.pid if task.process else None,
                                "waiting_reason": self._task_waiting_name(task),
                                "finished": task.finished,
                            }
                            for task in job.tasks
                        ],
                        "waiting_reason": self._job_waiting_reason(job),
                        "canceled": job.canceled,
                    }
                    for job in jobs
                ],
                "tasks_running": [[t.job.launch_id, t.task_id] for t in running],
                "tasks_waiting": [[t.job.launch_id, t.task_id] for t in self._tasks_waiting],
            }


__all__ = ["ResourceType", "WaitingReason", "StandaloneBackend"]
