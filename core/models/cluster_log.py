# ============================================================================
# CLUSTER JOB LOG MODEL
# ============================================================================
# STATUS: Core model - Persisted lifecycle state of a job
# PURPOSE: History, launch result, array progress, result and failures
# CREATED: 06 MAR 2026
# EXPORTS: ClusterJobLog, HistoryEntry, ArrayProgress, LaunchResult,
#          JobResult, FailureEntry
# DEPENDENCIES: pydantic
# ============================================================================
"""
Cluster Job Log Model

Every job has one log for the job as a whole (array_index None) and, for
array jobs, one log per array element (array_index 1..N).

Maps to: cluster_job_logs table

The history is append-only. The current status is always the status of
the last history entry; nothing else stores a status.
"""

import time
from typing import ClassVar, List, Optional

from pydantic import BaseModel, Field

from core.contracts import JobStatus, ResultType, RunStatus


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class HistoryEntry(BaseModel):
    """One status transition."""
    status: JobStatus
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")


class ArrayProgress(BaseModel):
    """
    Counters for array jobs, only maintained on the parent log.

    Invariants:
        num_ended <= array size
        num_canceled + num_failed <= num_ended
    """
    num_started: int = 0
    num_ended: int = 0
    num_canceled: int = 0
    num_failed: int = 0


class LaunchResult(BaseModel):
    """What the backend said when the job was handed over."""
    job_id: Optional[int] = Field(default=None, description="Backend-native launch id")
    out: str = Field(default="", description="Launcher console output")
    command: Optional[str] = None
    script: Optional[str] = Field(default=None, description="Rendered launch script, if any")


class JobResult(BaseModel):
    """Final outcome of a job or array element."""
    type: ResultType
    out: Optional[str] = None
    cancel_reason: Optional[str] = None
    exit_code: Optional[int] = None

    def apply_exit_code(self, exit_code: Optional[int]) -> "JobResult":
        """
        Fold in the process exit code.

        A nonzero code turns SUCCESS into FAILURE. The code is always
        recorded. FAILURE and CANCELED are never turned back into SUCCESS.
        """
        if exit_code is None:
            return self
        if self.type == ResultType.SUCCESS and exit_code != 0:
            return self.model_copy(update={"type": ResultType.FAILURE, "exit_code": exit_code})
        return self.model_copy(update={"exit_code": exit_code})

    def apply_failures(self, has_failures: bool) -> "JobResult":
        """Any recorded failure entry forces FAILURE."""
        if has_failures:
            return self.model_copy(update={"type": ResultType.FAILURE})
        return self


class FailureEntry(BaseModel):
    """An out-of-band failure signal, e.g. from a liveness monitor."""
    timestamp: int = Field(default_factory=now_ms)
    reason: Optional[str] = None


class ClusterJobLog(BaseModel):
    """Persisted lifecycle state of a job or one array element."""

    __sql_table__: ClassVar[str] = "cluster_job_logs"
    __sql_primary_key__: ClassVar[List[str]] = ["job_id", "array_index"]

    job_id: str
    array_index: Optional[int] = Field(default=None, ge=1)
    submit_failure: Optional[str] = None
    launch_result: Optional[LaunchResult] = None
    array_progress: Optional[ArrayProgress] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    result: Optional[JobResult] = None
    failures: List[FailureEntry] = Field(default_factory=list)

    def status(self) -> Optional[JobStatus]:
        """Status of the last history entry, or None for an empty history."""
        if not self.history:
            return None
        return self.history[-1].status

    def is_terminal(self) -> bool:
        status = self.status()
        return status is not None and status.is_terminal()

    def was_canceled(self) -> bool:
        """True if a cancel was ever requested."""
        return any(entry.status == JobStatus.CANCELING for entry in self.history)

    def terminal_timestamp(self) -> Optional[int]:
        """Timestamp of the most recent terminal transition."""
        timestamps = [
            entry.timestamp for entry in self.history
            if entry.status.is_terminal()
        ]
        return max(timestamps) if timestamps else None

    def run_status(self) -> RunStatus:
        """Map the log to a display status."""
        status = self.status()
        if status == JobStatus.ENDED:
            if self.result is None:
                return RunStatus.CANCELED if self.was_canceled() else RunStatus.FAILED
            return {
                ResultType.SUCCESS: RunStatus.SUCCEEDED,
                ResultType.FAILURE: RunStatus.FAILED,
                ResultType.CANCELED: RunStatus.CANCELED,
            }[self.result.type]
        if status == JobStatus.ABANDONED:
            return RunStatus.FAILED
        if status == JobStatus.CANCELING:
            return RunStatus.CANCELED
        if status == JobStatus.STARTED:
            return RunStatus.RUNNING
        return RunStatus.WAITING


__all__ = [
    "now_ms",
    "HistoryEntry",
    "ArrayProgress",
    "LaunchResult",
    "JobResult",
    "FailureEntry",
    "ClusterJobLog",
]
