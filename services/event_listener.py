# ============================================================================
# LOGGING LISTENER
# ============================================================================
# STATUS: Service - Lifecycle checkpoints for cluster jobs
# PURPOSE: Turn job events into log checkpoints for debugging and auditing
# CREATED: 15 MAR 2026
# ============================================================================
"""
Logging Listener

Registered at startup so every job lifecycle event leaves a checkpoint in
the log, e.g. "cluster_job_ended" with the result type.
"""

import logging
from typing import Optional

from core.contracts import ResultType
from core.logging import log_checkpoint
from core.models import ClusterJob
from services.listener_registry import ClusterJobListener

logger = logging.getLogger(__name__)


class LoggingListener(ClusterJobListener):

    async def on_submit(self, job: ClusterJob) -> None:
        log_checkpoint(
            "cluster_job_submitted",
            {"job_id": job.job_id, "owner_id": job.owner_id, "array_size": job.array_size},
            logger,
        )

    async def on_start(self, owner_id: Optional[str], job_id: str) -> None:
        log_checkpoint("cluster_job_started", {"job_id": job_id, "owner_id": owner_id}, logger)

    async def on_start_array(self, owner_id, job_id, array_index, num_started) -> None:
        logger.debug(f"Cluster job {job_id}[{array_index}] started ({num_started} started)")

    async def on_end_array(self, owner_id, job_id, array_index, num_ended, num_canceled, num_failed) -> None:
        logger.debug(
            f"Cluster job {job_id}[{array_index}] ended "
            f"({num_ended} ended, {num_canceled} canceled, {num_failed} failed)"
        )

    async def on_end(self, owner_id: Optional[str], job_id: str, result_type: ResultType) -> None:
        log_checkpoint(
            "cluster_job_ended",
            {"job_id": job_id, "owner_id": owner_id, "result": result_type.value},
            logger,
        )


__all__ = ["LoggingListener"]
