# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# STATUS: Foundation - Core enums shared by every layer
# PURPOSE: Cluster job status, result and cancel enums
# LAST_REVIEWED: 14 SEP 2026
# EXPORTS: JobStatus, ResultType, RunStatus, CancelResult, ClusterMode
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the cluster job orchestrator.

These enums cross every boundary:
- SQL (PostgreSQL JSONB history entries)
- HTTP (callback and control routes)
- Python (orchestrator and backends)

String values are persisted, so never rename them.
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class JobStatus(str, Enum):
    """
    Cluster job lifecycle states.

    State transitions:
        SUBMITTED -> LAUNCHED -> STARTED -> ENDED
        SUBMITTED, LAUNCHED, STARTED -> CANCELING -> ENDED
                                               -> ABANDONED (second cancel)
    """
    SUBMITTED = "submitted"      # Record persisted, not yet handed to the backend
    LAUNCHED = "launched"        # Backend accepted the job, has a native id
    STARTED = "started"          # Job script reported it is running
    CANCELING = "canceling"      # Cancel requested
    ABANDONED = "abandoned"      # Cancel requested twice, given up on
    ENDED = "ended"              # Finished, one way or another

    @classmethod
    def _missing_(cls, value):
        # legacy records used "finished" before it was renamed
        if value == "finished":
            return cls.ENDED
        return None

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self in (JobStatus.ENDED, JobStatus.ABANDONED)


class ResultType(str, Enum):
    """Final outcome of a job or array element."""
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELED = "canceled"

    def is_successful(self) -> bool:
        return self == ResultType.SUCCESS


class RunStatus(str, Enum):
    """
    Coarse run status for display.

    Derived from the job log, never persisted.
    """
    WAITING = "waiting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class CancelResult(str, Enum):
    """Outcome of canceling every job for an owner."""
    UNKNOWN_JOB = "unknown_job"              # Owner has no jobs
    CANCEL_REQUESTED = "cancel_requested"    # Some jobs still need an ended() callback
    ALL_CANCELED = "all_canceled"            # Every job finalized synchronously


class ClusterMode(str, Enum):
    """Which backend executes the jobs."""
    SLURM = "slurm"
    STANDALONE = "standalone"
    LOAD_TESTING = "load_testing"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JobStatus",
    "ResultType",
    "RunStatus",
    "CancelResult",
    "ClusterMode",
]
