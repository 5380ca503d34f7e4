# ============================================================================
# CLUSTER JOB ERRORS
# ============================================================================
# STATUS: Foundation - Exception hierarchy
# PURPOSE: Typed errors raised by the orchestrator and backends
# CREATED: 03 MAR 2026
# ============================================================================
"""
Cluster Job Errors

Exception hierarchy for the orchestrator. The API layer maps these to
HTTP status codes:

    JobNotFoundError      -> 404
    JobStateError         -> 409
    ValidationFailedError -> 400
    LaunchFailedError     -> 502
"""

from typing import List, Optional


class ClusterJobError(Exception):
    """Base exception for cluster job operations."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)


class JobStateError(ClusterJobError):
    """
    Raised for caller-side sequencing bugs.

    Examples: re-submitting a job that already has an id, depending on a
    job that was never launched, using an unregistered owner listener.
    Never retried.
    """


class JobNotFoundError(ClusterJobError):
    """Raised when no record or log exists for a job id."""

    def __init__(self, job_id: str, array_index: Optional[int] = None):
        self.array_index = array_index
        where = f"{job_id}" if array_index is None else f"{job_id}[{array_index}]"
        super().__init__(f"Cluster job not found: {where}", job_id=job_id)


class ValidationFailedError(ClusterJobError):
    """
    Raised when a job is rejected because of user input.

    The message is shown to users as-is, so keep it readable.
    """

    def __init__(self, reason: str, job_id: Optional[str] = None):
        self.reason = reason
        super().__init__(reason, job_id=job_id)


class LaunchFailedError(ClusterJobError):
    """
    Raised when the backend refuses a job.

    Carries the launcher's console output so it can be stored in place
    of a launch result.
    """

    def __init__(
        self,
        reason: str,
        console: Optional[List[str]] = None,
        command: Optional[str] = None,
        job_id: Optional[str] = None,
    ):
        self.reason = reason
        self.console = list(console or [])
        self.command = command
        super().__init__(reason, job_id=job_id)


__all__ = [
    "ClusterJobError",
    "JobStateError",
    "JobNotFoundError",
    "ValidationFailedError",
    "LaunchFailedError",
]
