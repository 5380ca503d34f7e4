# ============================================================================
# CLUSTER JOB STORE CONTRACT
# ============================================================================
# STATUS: Core - Persistence contract for cluster jobs
# PURPOSE: Define the atomic operations the orchestrator relies on
# CREATED: 09 MAR 2026
# ============================================================================
"""
Cluster Job Store Contract

The orchestrator never reads a value, changes it, and writes it back.
Every mutation it needs is one store operation, and every implementation
must make each operation atomic:

- push_history: append one history entry (creating the log if missing)
- append_terminal: append a terminal entry only if the log is not already
  terminal, and report whether it did
- increment_progress: add to array counters and return the new values
- claim_owner_notification: succeed for exactly one caller per round

Array index None is the log of the job as a whole. Array elements use
1-based indices.
"""

import uuid
from abc import ABC, abstractmethod
from typing import List, Optional

from core.models import (
    ArrayProgress,
    ClusterJob,
    ClusterJobLog,
    FailureEntry,
    HistoryEntry,
    JobResult,
    LaunchResult,
)


def new_job_id() -> str:
    """Store-generated job id. Never contains '_', dependency strings rely on it."""
    return uuid.uuid4().hex


class ClusterJobStore(ABC):
    """Persistence for cluster jobs and their logs."""

    # =========================================================================
    # JOB RECORDS
    # =========================================================================

    @abstractmethod
    async def create_job(self, job: ClusterJob) -> ClusterJob:
        """
        Persist a new job and assign its id.

        Returns:
            A copy of the job with job_id set
        """

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[ClusterJob]:
        """Get a job by id, or None."""

    @abstractmethod
    async def get_jobs_by_owner(self, owner_id: str) -> List[ClusterJob]:
        """All jobs for an owner, oldest first."""

    @abstractmethod
    async def delete_job(self, job_id: str) -> bool:
        """Delete a job and every one of its logs. Returns False if unknown."""

    # =========================================================================
    # LOGS
    # =========================================================================

    @abstractmethod
    async def create_log(
        self,
        job_id: str,
        entry: HistoryEntry,
        array_size: Optional[int] = None,
    ) -> ClusterJobLog:
        """Create the job-level log with one entry. Array jobs start with zeroed progress."""

    @abstractmethod
    async def get_log(self, job_id: str, array_index: Optional[int] = None) -> Optional[ClusterJobLog]:
        """Get the log of a job or array element, or None."""

    @abstractmethod
    async def get_element_logs(self, job_id: str) -> List[ClusterJobLog]:
        """All array element logs of a job, by index."""

    @abstractmethod
    async def push_history(
        self,
        job_id: str,
        array_index: Optional[int],
        entry: HistoryEntry,
    ) -> None:
        """Append a history entry, creating the log if it does not exist yet."""

    @abstractmethod
    async def append_terminal(
        self,
        job_id: str,
        array_index: Optional[int],
        entry: HistoryEntry,
    ) -> bool:
        """
        Append a terminal entry unless the log is already terminal.

        Returns:
            True if this call appended the entry
        """

    @abstractmethod
    async def push_failure(
        self,
        job_id: str,
        array_index: Optional[int],
        failure: FailureEntry,
    ) -> None:
        """Record an out-of-band failure, creating the log if needed."""

    @abstractmethod
    async def record_launch(self, job_id: str, entry: HistoryEntry, launch_result: LaunchResult) -> bool:
        """
        Store the launch result and append the LAUNCHED entry, in one step.

        The entry is skipped when the job log is already terminal (the job
        was canceled while the backend was launching it). The launch result
        is stored either way, so the backend can still find the native job.

        Returns:
            True if the LAUNCHED entry was appended
        """

    @abstractmethod
    async def set_launch_result(self, job_id: str, launch_result: LaunchResult) -> None:
        """Store a launch result without touching history (failed launches)."""

    @abstractmethod
    async def set_submit_failure(self, job_id: str, reason: str) -> None:
        """Store why submission failed before the backend saw the job."""

    @abstractmethod
    async def set_result(self, job_id: str, array_index: Optional[int], result: JobResult) -> None:
        """Store the final result of a job or array element."""

    @abstractmethod
    async def increment_progress(
        self,
        job_id: str,
        started: int = 0,
        ended: int = 0,
        canceled: int = 0,
        failed: int = 0,
    ) -> ArrayProgress:
        """
        Atomically add to the array counters of a job.

        Returns:
            Counter values after the increment
        """

    # =========================================================================
    # OWNER NOTIFICATIONS
    # =========================================================================

    @abstractmethod
    async def claim_owner_notification(self, owner_id: str, round_key: str) -> bool:
        """
        Claim the right to notify an owner listener for one round of jobs.

        Returns:
            True for exactly one caller per (owner_id, round_key)
        """

    @abstractmethod
    async def clear_owner_notifications(self, owner_id: str) -> None:
        """Forget every claim for an owner."""


__all__ = ["ClusterJobStore", "new_job_id"]
