# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# LAST_REVIEWED: 06 MAR 2026
# ============================================================================

from core.contracts import JobStatus, ResultType, RunStatus, CancelResult, ClusterMode
from core.errors import (
    ClusterJobError,
    JobStateError,
    JobNotFoundError,
    ValidationFailedError,
    LaunchFailedError,
)
from core.models import (
    ClusterJob,
    ClusterJobLog,
    CommandsScript,
    CommandsGrid,
    JobResult,
    LaunchResult,
)

__all__ = [
    # Enums
    "JobStatus",
    "ResultType",
    "RunStatus",
    "CancelResult",
    "ClusterMode",
    # Errors
    "ClusterJobError",
    "JobStateError",
    "JobNotFoundError",
    "ValidationFailedError",
    "LaunchFailedError",
    # Models
    "ClusterJob",
    "ClusterJobLog",
    "CommandsScript",
    "CommandsGrid",
    "JobResult",
    "LaunchResult",
]
