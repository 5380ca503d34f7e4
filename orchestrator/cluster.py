# ============================================================================
# CLUSTER JOB ORCHESTRATOR
# ============================================================================
# STATUS: Core - Cluster job lifecycle state machine
# PURPOSE: Submit, track, cancel and finalize cluster jobs
# CREATED: 16 MAR 2026
# ============================================================================
"""
Cluster Job Orchestrator

Composes the store, the backend and the listener registry into the job
lifecycle:

    submit()     validate -> persist (SUBMITTED) -> resolve deps -> render
                 and stage scripts -> backend.launch() -> LAUNCHED
    started()    job script reported it is running (per array element)
    ended()      job script exited; read the result, finalize when every
                 element is done, notify the owner when every job is done
    cancel_all() cancel every job of an owner

Lifecycle:
    SUBMITTED -> LAUNCHED -> STARTED -> ENDED
    SUBMITTED | LAUNCHED | STARTED -> CANCELING -> ENDED | ABANDONED

No locks are held around this logic. started() and ended() for different
jobs, and for different elements of one array job, run concurrently and
rely on the store's atomic operations:

    - increment_progress() returns post-increment counters, so exactly one
      caller sees the first start and exactly one sees the last end
    - append_terminal() lets exactly one caller finalize a job
    - claim_owner_notification() lets exactly one caller notify an owner
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Dict, List, Optional, Set

from core.contracts import CancelResult, JobStatus, ResultType
from core.errors import (
    JobNotFoundError,
    JobStateError,
    LaunchFailedError,
    ValidationFailedError,
)
from core.logging import log_context
from core.models import (
    ArrayProgress,
    ClusterJob,
    ClusterJobLog,
    FailureEntry,
    HistoryEntry,
    JobResult,
    LaunchResult,
)
from orchestrator.engine.commands import (
    CommandsConfig,
    FileInfo,
    files_to_delete,
    render,
    submission_script,
)
from repositories.base import ClusterJobStore
from services.listener_registry import ListenerRegistry, OwnerListener
from services.stream_log import StreamLog

if TYPE_CHECKING:
    from backends.base import ClusterBackend

logger = logging.getLogger(__name__)


def owner_round_key(job_ids: List[str]) -> str:
    """Identifies one group of jobs of an owner, for exactly-once owner notification."""
    return hashlib.sha256(",".join(sorted(job_ids)).encode("utf-8")).hexdigest()


def split_dependency(dep_id: str):
    """'abc_4' -> ('abc', '4'), 'abc' -> ('abc', None)"""
    job_id, sep, array_index = dep_id.partition("_")
    return job_id, (array_index if sep else None)


def reduce_result_types(types: List[ResultType]) -> Optional[ResultType]:
    """The first non-success wins, otherwise success. None for an empty list."""
    if not types:
        return None
    for result_type in types:
        if result_type != ResultType.SUCCESS:
            return result_type
    return ResultType.SUCCESS


class ClusterOrchestrator:
    """
    Cluster job lifecycle.

    Built once at startup with its collaborators injected; holds no job
    state of its own apart from pending cleanup tasks.
    """

    def __init__(
        self,
        store: ClusterJobStore,
        backend: "ClusterBackend",
        registry: ListenerRegistry,
        stream_log: Optional[StreamLog] = None,
        config: Optional[CommandsConfig] = None,
    ):
        self.store = store
        self.backend = backend
        self.registry = registry
        self.stream_log = stream_log
        self.config = config or backend.commands_config
        self._cleanup_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # SUBMIT
    # =========================================================================

    async def submit(self, job: ClusterJob) -> Optional[str]:
        """
        Submit a new job to the backend.

        Args:
            job: Job without an id

        Returns:
            The new job id, or None if the backend launched nothing or the
            job was canceled while it was being launched

        Raises:
            JobStateError: Job already submitted, owner listener not
                registered, or a dependency not launched yet
            ValidationFailedError: The job was rejected
            LaunchFailedError: The backend refused the job
        """
        if job.job_id is not None:
            raise JobStateError(f"cluster job already submitted: {job.job_id}", job_id=job.job_id)

        if job.owner_listener_id is not None and self.registry.find_owner_listener(job.owner_listener_id) is None:
            raise JobStateError(
                f"Owner listener {job.owner_listener_id} is not registered. "
                f"Add it with ListenerRegistry.add_owner_listener()."
            )

        # fail before anything is persisted
        self.backend.validate(job)
        try:
            self.config.profile(job.container_id)
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e

        job = await self.store.create_job(job)
        job_id = job.id_or_raise
        await self.store.create_log(
            job_id,
            HistoryEntry(status=JobStatus.SUBMITTED),
            array_size=job.array_size,
        )

        with log_context(job_id=job_id, owner_id=job.owner_id, operation="submit"):
            logger.info(f"Cluster job {job_id} submitted ({job.web_name or job.cluster_name or 'unnamed'})")
            await self._emit("on_submit", job)

            try:
                launch_result = await self._launch(job)
            except Exception as e:
                try:
                    await self._recover_failed_submit(job, e)
                except Exception as recovery_error:
                    logger.exception(f"Recovery of failed submission for cluster job {job_id} failed too: {recovery_error}")
                raise

            if launch_result is None:
                logger.info(f"Backend launched nothing for cluster job {job_id}")
                return None

            launched = await self.store.record_launch(
                job_id,
                HistoryEntry(status=JobStatus.LAUNCHED),
                launch_result,
            )
            if not launched:
                # cancel_all() finalized the job while the backend was launching it
                logger.info(f"Cluster job {job_id} was canceled during launch, canceling it on the backend")
                await self.backend.cancel([job])
                return None

            logger.info(f"Cluster job {job_id} launched (native id {launch_result.job_id})")
            return job_id

    async def _launch(self, job: ClusterJob) -> Optional[LaunchResult]:
        if job.array_size == 0:
            # an empty array has nothing to run
            return None

        dep_ids = [await self._resolve_dependency(dep_id) for dep_id in job.deps]
        for dep_id in dep_ids:
            self.backend.validate_dependency(dep_id)

        rendered = render(job, self.config)
        script_path = job.batch_path(self.config.batch_dir)
        script = FileInfo(script_path, submission_script(job, rendered, self.config), executable=True)
        await self.backend.stage(
            [self.config.batch_dir, self.config.log_dir],
            list(rendered.files) + [script],
        )

        return await self.backend.launch(job, dep_ids, script_path)

    async def _resolve_dependency(self, dep_id: str) -> str:
        """Turn '<jobId>[_<index>]' into '<nativeId>[_<index>]'."""
        dep_job_id, array_index = split_dependency(dep_id)
        log = await self.store.get_log(dep_job_id)
        launch_id = log.launch_result.job_id if log is not None and log.launch_result is not None else None
        if launch_id is None:
            raise JobStateError(f"dependency job with id={dep_id} not launched yet")
        if array_index is not None:
            return f"{launch_id}_{array_index}"
        return str(launch_id)

    async def _recover_failed_submit(self, job: ClusterJob, error: Exception) -> None:
        # no events will ever arrive for this job, so end it now
        job_id = job.id_or_raise
        await self.store.push_history(job_id, None, HistoryEntry(status=JobStatus.ENDED))

        if isinstance(error, LaunchFailedError):
            await self.store.set_launch_result(
                job_id,
                LaunchResult(job_id=None, out="\n".join(error.console), command=error.command),
            )
        elif isinstance(error, ValidationFailedError):
            await self.store.set_submit_failure(job_id, str(error) or "(unknown validation reason)")
        else:
            await self.store.set_submit_failure(job_id, "Internal Error")

        logger.warning(f"Submission of cluster job {job_id} failed: {error}")

        await self._emit("on_end", job.owner_id, job_id, ResultType.FAILURE)
        if job.array_size is not None:
            # nothing will start, but report the whole range so observers
            # don't show N pending elements forever
            size = job.array_size
            await self._emit("on_start_array", job.owner_id, job_id, 0, size)
            await self._emit("on_end_array", job.owner_id, job_id, 0, size, 0, size)

    # =========================================================================
    # STARTED
    # =========================================================================

    async def started(self, job_id: str, array_index: Optional[int] = None) -> None:
        """
        The job (or one array element) started running.

        Raises:
            JobNotFoundError: Unknown job
            JobStateError: Array index given for a non-array job, or missing for an array job
        """
        job = await self._require_job(job_id, array_index)

        with log_context(job_id=job_id, array_index=array_index, owner_id=job.owner_id, operation="started"):
            parent = await self.store.get_log(job_id)
            if parent is not None and parent.is_terminal():
                logger.info(f"Ignoring start of cluster job {job_id}, already {parent.status().value}")
                return

            await self.store.push_history(job_id, array_index, HistoryEntry(status=JobStatus.STARTED))

            if array_index is None:
                logger.debug(f"Cluster job {job_id} started")
                await self._emit("on_start", job.owner_id, job_id)
                return

            progress = await self.store.increment_progress(job_id, started=1)
            if progress.num_started == 1:
                await self.store.push_history(job_id, None, HistoryEntry(status=JobStatus.STARTED))
                logger.debug(f"Cluster job {job_id} started (first array element {array_index})")
                await self._emit("on_start", job.owner_id, job_id)

            await self._emit("on_start_array", job.owner_id, job_id, array_index, progress.num_started)

    # =========================================================================
    # ENDED
    # =========================================================================

    async def ended(
        self,
        job_id: str,
        array_index: Optional[int] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        """
        The job (or one array element) exited.

        Raises:
            JobNotFoundError: Unknown job
            JobStateError: Array index given for a non-array job, or missing for an array job
        """
        job = await self._require_job(job_id, array_index)

        with log_context(job_id=job_id, array_index=array_index, owner_id=job.owner_id, operation="ended"):
            log = await self.store.get_log(job_id, array_index)
            if log is not None and log.is_terminal():
                logger.info(f"Ignoring duplicate end of cluster job {job_id}[{array_index}]")
                return

            # reading output may be slow, so do it before touching state
            result = await self.backend.job_result(job, array_index)
            result = result.apply_exit_code(exit_code)
            result = result.apply_failures(await self._has_failures(job_id, array_index))

            if array_index is None:
                await self._ended_single(job, result)
            else:
                await self._ended_element(job, array_index, result)

    async def _ended_single(self, job: ClusterJob, result: JobResult) -> None:
        job_id = job.id_or_raise
        await self.store.set_result(job_id, None, result)
        appended = await self.store.append_terminal(job_id, None, HistoryEntry(status=JobStatus.ENDED))
        if not appended:
            # cancel_all() finalized it first, or a concurrent duplicate won
            logger.info(f"Cluster job {job_id} was already finalized, ignoring its end signal")
            return

        logger.info(f"Cluster job {job_id} ended: {result.type.value}")
        await self._stream_end(job_id, result)
        await self._job_all_ended(job, result.type)

    async def _ended_element(self, job: ClusterJob, array_index: int, result: JobResult) -> None:
        job_id = job.id_or_raise
        await self.store.set_result(job_id, array_index, result)
        await self.store.push_history(job_id, array_index, HistoryEntry(status=JobStatus.ENDED))

        if array_index == 1:
            await self._stream_end(job_id, result)

        progress = await self.store.increment_progress(
            job_id,
            ended=1,
            failed=1 if result.type == ResultType.FAILURE else 0,
            canceled=1 if result.type == ResultType.CANCELED else 0,
        )

        await self._emit(
            "on_end_array",
            job.owner_id,
            job_id,
            array_index,
            progress.num_ended,
            progress.num_canceled,
            progress.num_failed,
        )

        parent = await self.store.get_log(job_id)
        all_ended = (
            progress.num_ended >= job.array_size
            or (parent is not None and parent.was_canceled() and progress.num_started == progress.num_ended)
        )
        if not all_ended:
            return

        result_type = self._array_result_type(job, progress)
        appended = await self.store.append_terminal(job_id, None, HistoryEntry(status=JobStatus.ENDED))
        if not appended:
            return
        await self.store.set_result(job_id, None, JobResult(type=result_type))

        logger.info(
            f"Cluster job {job_id} ended: {result_type.value} "
            f"({progress.num_ended}/{job.array_size} ended, "
            f"{progress.num_failed} failed, {progress.num_canceled} canceled)"
        )
        await self._job_all_ended(job, result_type)

    @staticmethod
    def _array_result_type(job: ClusterJob, progress: ArrayProgress) -> ResultType:
        if progress.num_failed > 0:
            return ResultType.FAILURE
        if progress.num_canceled > 0 or progress.num_ended < (job.array_size or 0):
            return ResultType.CANCELED
        return ResultType.SUCCESS

    async def _job_all_ended(self, job: ClusterJob, result_type: ResultType) -> None:
        await self._emit("on_end", job.owner_id, job.id_or_raise, result_type)
        self._schedule_cleanup(job)
        await self._maybe_notify_owner(job)

    async def _has_failures(self, job_id: str, array_index: Optional[int]) -> bool:
        logs = [await self.store.get_log(job_id, array_index)]
        if array_index is not None:
            logs.append(await self.store.get_log(job_id))
        return any(log is not None and log.failures for log in logs)

    async def _stream_end(self, job_id: str, result: JobResult) -> None:
        if self.stream_log is None:
            return
        try:
            await self.stream_log.end(job_id, result)
        except Exception as e:
            logger.warning(f"Stream log end failed for cluster job {job_id}: {e}")

    # =========================================================================
    # OWNER NOTIFICATION
    # =========================================================================

    async def _maybe_notify_owner(self, job: ClusterJob) -> None:
        owner_id = job.owner_id
        if owner_id is None:
            return
        listener = self.registry.find_owner_listener(job.owner_listener_id)
        if listener is None:
            return

        jobs = await self.store.get_jobs_by_owner(owner_id)
        logs: Dict[str, ClusterJobLog] = {}
        for owner_job in jobs:
            log = await self.store.get_log(owner_job.id_or_raise)
            if log is None or not log.is_terminal():
                return
            logs[owner_job.id_or_raise] = log

        # the most recently finished job decides
        latest = max(jobs, key=lambda j: logs[j.id_or_raise].terminal_timestamp() or 0)
        result_type = await self._owner_result_type(latest, logs[latest.id_or_raise])

        await self._notify_owner(listener, owner_id, [j.id_or_raise for j in jobs], result_type)

    async def _owner_result_type(self, job: ClusterJob, log: ClusterJobLog) -> ResultType:
        if job.array_size is not None:
            by_index = {
                element.array_index: element.result.type
                for element in await self.store.get_element_logs(job.id_or_raise)
                if element.result is not None
            }
            # a missing element result counts as a failure
            types = [by_index.get(i, ResultType.FAILURE) for i in range(1, job.array_size + 1)]
            result_type = reduce_result_types(types)
        elif log.result is not None:
            result_type = log.result.type
        elif log.was_canceled():
            result_type = ResultType.CANCELED
        else:
            result_type = None
        return result_type or ResultType.FAILURE

    async def _notify_owner(
        self,
        listener: OwnerListener,
        owner_id: str,
        job_ids: List[str],
        result_type: ResultType,
    ) -> bool:
        if not await self.store.claim_owner_notification(owner_id, owner_round_key(job_ids)):
            logger.debug(f"Owner {owner_id} already notified for this round")
            return False
        logger.info(f"All cluster jobs of owner {owner_id} ended: {result_type.value}")
        await listener.ended(owner_id, result_type)
        return True

    # =========================================================================
    # CANCEL
    # =========================================================================

    async def cancel_all(self, owner_id: str) -> CancelResult:
        """
        Cancel every job of an owner.

        Returns:
            UNKNOWN_JOB if the owner has no jobs, CANCEL_REQUESTED if some
            job is still running and an ended() callback is expected,
            ALL_CANCELED if every job was finalized right away
        """
        jobs = await self.store.get_jobs_by_owner(owner_id)
        if not jobs:
            return CancelResult.UNKNOWN_JOB

        to_cancel: List[ClusterJob] = []
        wait_on_backend = False

        with log_context(owner_id=owner_id, operation="cancel_all"):
            for job in jobs:
                job_id = job.id_or_raise
                log = await self.store.get_log(job_id)
                status = log.status() if log is not None else None
                finalize: Optional[JobStatus] = None

                if status is None or status == JobStatus.SUBMITTED:
                    # the backend never heard of it
                    await self.store.push_history(job_id, None, HistoryEntry(status=JobStatus.CANCELING))
                    finalize = JobStatus.ENDED

                elif status == JobStatus.LAUNCHED:
                    # never started, so no end signal will ever arrive either
                    await self.store.push_history(job_id, None, HistoryEntry(status=JobStatus.CANCELING))
                    to_cancel.append(job)
                    finalize = JobStatus.ENDED

                elif status == JobStatus.STARTED:
                    await self.store.push_history(job_id, None, HistoryEntry(status=JobStatus.CANCELING))
                    to_cancel.append(job)
                    wait_on_backend = True

                elif status == JobStatus.CANCELING:
                    # the first cancel evidently didn't work
                    finalize = JobStatus.ABANDONED

                if finalize is not None:
                    if await self.store.append_terminal(job_id, None, HistoryEntry(status=finalize)):
                        logger.info(f"Cluster job {job_id} canceled: {finalize.value}")
                        await self._emit("on_end", owner_id, job_id, ResultType.CANCELED)

            if to_cancel:
                logger.info(f"Asking the backend to cancel {len(to_cancel)} cluster job(s) of owner {owner_id}")
                await self.backend.cancel(to_cancel)

            if wait_on_backend:
                return CancelResult.CANCEL_REQUESTED

            # no ended() calls will follow, so tell the owner now
            listener = self._owner_listener_for(owner_id, jobs)
            if listener is not None:
                await self._notify_owner(listener, owner_id, [j.id_or_raise for j in jobs], ResultType.CANCELED)

            return CancelResult.ALL_CANCELED

    def _owner_listener_for(self, owner_id: str, jobs: List[ClusterJob]) -> Optional[OwnerListener]:
        for job in jobs:
            listener = self.registry.find_owner_listener(job.owner_listener_id)
            if listener is not None:
                return listener
        return self.registry.find_owner_listener(owner_id)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, job_id: str) -> None:
        """
        Delete a job and all of its logs.

        Raises:
            JobNotFoundError: Unknown job
        """
        if not await self.store.delete_job(job_id):
            raise JobNotFoundError(job_id)
        logger.debug(f"Cluster job {job_id} deleted")

    async def delete_all(self, owner_id: str) -> int:
        """Delete every job of an owner. Returns how many were deleted."""
        deleted = 0
        for job in await self.store.get_jobs_by_owner(owner_id):
            if await self.store.delete_job(job.id_or_raise):
                deleted += 1
        await self.store.clear_owner_notifications(owner_id)
        logger.info(f"Deleted {deleted} cluster job(s) of owner {owner_id}")
        return deleted

    async def delete_all_many(self, owner_ids: List[str]) -> int:
        total = 0
        for owner_id in owner_ids:
            total += await self.delete_all(owner_id)
        return total

    # =========================================================================
    # INSPECTION
    # =========================================================================

    async def waiting_reason(self, job_id: str) -> str:
        """Human-readable reason a job has not started yet."""
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        log = await self.store.get_log(job_id)
        if log is None:
            return "Unknown reason, no job log was found"

        status = log.status()
        if status is None or status == JobStatus.SUBMITTED:
            return "Job is waiting to submit to the cluster"
        if status == JobStatus.LAUNCHED:
            if log.launch_result is None:
                return "Unknown reason: the job has been sent to the cluster, but the job's cluster id was lost"
            reason = await self.backend.waiting_reason(job, log.launch_result)
            if reason is None:
                return "Unknown reason: the job has been sent to the cluster, but the cluster is not aware of this job"
            return reason
        if status == JobStatus.STARTED:
            return "Job is no longer waiting, it has started"
        if status == JobStatus.ENDED:
            return "Job is no longer waiting, it has ended"
        if status == JobStatus.CANCELING:
            return "Job is no longer waiting, it has been canceled"
        return "Job is no longer waiting, it has been abandoned"

    async def job_log_data(self, job_id: str, array_index: Optional[int] = None) -> Dict[str, Any]:
        """
        Everything the UI shows about a job's log.

        Raises:
            JobNotFoundError: Unknown job or log
        """
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        log = await self.store.get_log(job_id, array_index)
        if log is None:
            raise JobNotFoundError(job_id, array_index)

        failed_indices: List[int] = []
        if job.is_array and array_index is None:
            failed_indices = [
                element.array_index
                for element in await self.store.get_element_logs(job_id)
                if element.result is not None and element.result.type == ResultType.FAILURE
            ]

        return {
            "job_id": job_id,
            "array_index": array_index,
            "name": job.web_name or job.cluster_name,
            "status": log.status().value if log.status() else None,
            "run_status": log.run_status().value,
            "representative_command": job.commands.representative_command(),
            "commands": job.commands.display_lists(),
            "submit_failure": log.submit_failure,
            "launch_result": log.launch_result.model_dump() if log.launch_result else None,
            "result_type": log.result.type.value if log.result else None,
            "exit_code": log.result.exit_code if log.result else None,
            "out": log.result.out if log.result else None,
            "array_size": job.array_size,
            "failed_array_indices": failed_indices,
            "history": [entry.model_dump(mode="json") for entry in log.history],
        }

    # =========================================================================
    # FAILURES
    # =========================================================================

    async def record_failure(
        self,
        job_id: str,
        array_index: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record an out-of-band failure; the job's result will be FAILURE."""
        if await self.store.get_job(job_id) is None:
            raise JobNotFoundError(job_id, array_index)
        await self.store.push_failure(job_id, array_index, FailureEntry(reason=reason))
        logger.warning(f"Failure recorded for cluster job {job_id}[{array_index}]: {reason or 'no reason given'}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _require_job(self, job_id: str, array_index: Optional[int]) -> ClusterJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id, array_index)
        if job.is_array and array_index is None:
            raise JobStateError(f"array job {job_id} needs an array index", job_id=job_id)
        if not job.is_array and array_index is not None:
            raise JobStateError(f"job {job_id} is not an array job, got array index {array_index}", job_id=job_id)
        return job

    async def _emit(self, event: str, *args) -> None:
        """Fan an event out to every listener; listener errors are logged, not raised."""
        for listener in self.registry.listeners():
            try:
                await getattr(listener, event)(*args)
            except Exception as e:
                logger.exception(f"Cluster job listener {type(listener).__name__}.{event} failed: {e}")

    def _schedule_cleanup(self, job: ClusterJob) -> None:
        paths: List[Path] = [job.batch_path(self.config.batch_dir)]
        paths.extend(files_to_delete(job, self.config))
        paths.extend(self.backend.cleanup_paths(job))
        self._spawn(self._cleanup(job.id_or_raise, paths))

    async def _cleanup(self, job_id: str, paths: List[Path]) -> None:
        try:
            await self.backend.delete_files(paths)
        except Exception as e:
            logger.warning(f"Cleanup of cluster job {job_id} files failed: {e}")

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending cleanup tasks and backend callbacks. Used at shutdown and in tests."""
        await self.backend.drain()
        while self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks), return_exceptions=True)


__all__ = [
    "ClusterOrchestrator",
    "owner_round_key",
    "split_dependency",
    "reduce_result_types",
]
