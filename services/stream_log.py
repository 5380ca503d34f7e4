# ============================================================================
# STREAM LOG
# ============================================================================
# STATUS: Service - Job output streaming collaborator
# PURPOSE: Close a job's live output stream when it ends
# CREATED: 15 MAR 2026
# ============================================================================
"""
Stream Log

Live job output is streamed elsewhere; the orchestrator only tells the
stream that a job has ended. It is called at most once per job, using
array index None or 1 as the representative element of array jobs.
"""

import logging
from abc import ABC, abstractmethod

from core.models import JobResult

logger = logging.getLogger(__name__)


class StreamLog(ABC):

    @abstractmethod
    async def end(self, job_id: str, result: JobResult) -> None:
        """The job's output stream is complete."""


class LoggingStreamLog(StreamLog):
    """Stream log that only writes to the application log."""

    async def end(self, job_id: str, result: JobResult) -> None:
        logger.info(
            f"Stream ended for cluster job {job_id}: {result.type.value}"
            + (f", exit code {result.exit_code}" if result.exit_code is not None else "")
        )


__all__ = ["StreamLog", "LoggingStreamLog"]
