# ============================================================================
# IN-MEMORY CLUSTER JOB STORE
# ============================================================================
# STATUS: Core - Store for tests and single-process deployments
# PURPOSE: ClusterJobStore backed by dicts under an asyncio lock
# CREATED: 09 MAR 2026
# ============================================================================
"""
In-Memory Cluster Job Store

Every operation runs under one asyncio.Lock, which makes each of them
atomic for concurrent tasks on the same event loop. Models are copied on
the way in and out so callers can never mutate stored state.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from core.models import (
    ArrayProgress,
    ClusterJob,
    ClusterJobLog,
    FailureEntry,
    HistoryEntry,
    JobResult,
    LaunchResult,
)
from .base import ClusterJobStore, new_job_id

logger = logging.getLogger(__name__)

LogKey = Tuple[str, Optional[int]]


class MemoryClusterJobStore(ClusterJobStore):
    """ClusterJobStore kept entirely in process memory."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._jobs: Dict[str, ClusterJob] = {}
        self._logs: Dict[LogKey, ClusterJobLog] = {}
        self._claims: Set[Tuple[str, str]] = set()

    def _log_for_update(self, job_id: str, array_index: Optional[int]) -> ClusterJobLog:
        key = (job_id, array_index)
        log = self._logs.get(key)
        if log is None:
            log = ClusterJobLog(job_id=job_id, array_index=array_index)
            self._logs[key] = log
        return log

    # =========================================================================
    # JOB RECORDS
    # =========================================================================

    async def create_job(self, job: ClusterJob) -> ClusterJob:
        async with self._lock:
            job_id = new_job_id()
            stored = job.model_copy(update={"job_id": job_id}, deep=True)
            self._jobs[job_id] = stored
            logger.debug(f"Created cluster job {job_id}")
            return stored.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Optional[ClusterJob]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    async def get_jobs_by_owner(self, owner_id: str) -> List[ClusterJob]:
        async with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.owner_id == owner_id
            ]

    async def delete_job(self, job_id: str) -> bool:
        async with self._lock:
            if self._jobs.pop(job_id, None) is None:
                return False
            for key in [key for key in self._logs if key[0] == job_id]:
                del self._logs[key]
            return True

    # =========================================================================
    # LOGS
    # =========================================================================

    async def create_log(
        self,
        job_id: str,
        entry: HistoryEntry,
        array_size: Optional[int] = None,
    ) -> ClusterJobLog:
        async with self._lock:
            log = ClusterJobLog(
                job_id=job_id,
                history=[entry],
                array_progress=ArrayProgress() if array_size is not None else None,
            )
            self._logs[(job_id, None)] = log
            return log.model_copy(deep=True)

    async def get_log(self, job_id: str, array_index: Optional[int] = None) -> Optional[ClusterJobLog]:
        async with self._lock:
            log = self._logs.get((job_id, array_index))
            return log.model_copy(deep=True) if log is not None else None

    async def get_element_logs(self, job_id: str) -> List[ClusterJobLog]:
        async with self._lock:
            logs = [
                log for (log_job_id, index), log in self._logs.items()
                if log_job_id == job_id and index is not None
            ]
            return [log.model_copy(deep=True) for log in sorted(logs, key=lambda l: l.array_index)]

    async def push_history(self, job_id: str, array_index: Optional[int], entry: HistoryEntry) -> None:
        async with self._lock:
            self._log_for_update(job_id, array_index).history.append(entry)

    async def append_terminal(self, job_id: str, array_index: Optional[int], entry: HistoryEntry) -> bool:
        async with self._lock:
            log = self._log_for_update(job_id, array_index)
            if log.is_terminal():
                return False
            log.history.append(entry)
            return True

    async def push_failure(self, job_id: str, array_index: Optional[int], failure: FailureEntry) -> None:
        async with self._lock:
            self._log_for_update(job_id, array_index).failures.append(failure)

    async def record_launch(self, job_id: str, entry: HistoryEntry, launch_result: LaunchResult) -> bool:
        async with self._lock:
            log = self._log_for_update(job_id, None)
            log.launch_result = launch_result.model_copy(deep=True)
            if log.is_terminal():
                return False
            log.history.append(entry)
            return True

    async def set_launch_result(self, job_id: str, launch_result: LaunchResult) -> None:
        async with self._lock:
            self._log_for_update(job_id, None).launch_result = launch_result.model_copy(deep=True)

    async def set_submit_failure(self, job_id: str, reason: str) -> None:
        async with self._lock:
            self._log_for_update(job_id, None).submit_failure = reason

    async def set_result(self, job_id: str, array_index: Optional[int], result: JobResult) -> None:
        async with self._lock:
            self._log_for_update(job_id, array_index).result = result.model_copy(deep=True)

    async def increment_progress(
        self,
        job_id: str,
        started: int = 0,
        ended: int = 0,
        canceled: int = 0,
        failed: int = 0,
    ) -> ArrayProgress:
        async with self._lock:
            log = self._log_for_update(job_id, None)
            progress = log.array_progress or ArrayProgress()
            progress = ArrayProgress(
                num_started=progress.num_started + started,
                num_ended=progress.num_ended + ended,
                num_canceled=progress.num_canceled + canceled,
                num_failed=progress.num_failed + failed,
            )
            log.array_progress = progress
            return progress.model_copy()

    # =========================================================================
    # OWNER NOTIFICATIONS
    # =========================================================================

    async def claim_owner_notification(self, owner_id: str, round_key: str) -> bool:
        async with self._lock:
            key = (owner_id, round_key)
            if key in self._claims:
                return False
            self._claims.add(key)
            return True

    async def clear_owner_notifications(self, owner_id: str) -> None:
        async with self._lock:
            self._claims = {claim for claim in self._claims if claim[0] != owner_id}


__all__ = ["MemoryClusterJobStore"]
