# ============================================================================
# LOAD-TESTING BACKEND
# ============================================================================
# STATUS: Backend - No-op jobs that finish immediately
# PURPOSE: Exercise the callback and event handling path under load
# CREATED: 14 MAR 2026
# ============================================================================
"""
Load-Testing Backend

Not a real cluster. Every job "runs" instantly: launch writes a fake output
file for each element and posts the started/ended callbacks to the web
host from background tasks. Useful for load-testing callback handling
without waiting on a real scheduler.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set

import httpx

from core.contracts import ClusterMode, JobStatus, ResultType
from core.models import ClusterJob, JobResult, LaunchResult
from orchestrator.engine.commands import CommandsConfig
from repositories.base import ClusterJobStore
from backends.base import ClusterBackend

logger = logging.getLogger(__name__)

FAKE_OUTPUT = "command result here"


class LoadTestingBackend(ClusterBackend):
    """Pretends to run jobs, as fast as possible."""

    cluster_mode = ClusterMode.LOAD_TESTING

    def __init__(
        self,
        commands_config: CommandsConfig,
        store: ClusterJobStore,
        launch_wait_seconds: float = 5.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(commands_config, store)
        self.launch_wait_seconds = launch_wait_seconds
        self.timeout = timeout
        self.transport = transport
        self._tasks: Set[asyncio.Task] = set()

    def validate(self, job: ClusterJob) -> None:
        pass

    def validate_dependency(self, dep_id: str) -> None:
        pass

    async def launch(
        self,
        job: ClusterJob,
        dep_ids: List[str],
        script_path: Path,
    ) -> Optional[LaunchResult]:
        array_size = job.array_size
        indices: List[Optional[int]] = (
            list(range(1, array_size + 1)) if array_size is not None else [None]
        )
        for index in indices:
            task = asyncio.create_task(self._run(job, index))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return LaunchResult(job_id=None, out="", command=None)

    def _headers(self) -> Dict[str, str]:
        if self.commands_config.callback_token:
            return {"Authorization": f"Bearer {self.commands_config.callback_token}"}
        return {}

    async def _wait_for_launch(self, job_id: str) -> None:
        # callbacks must not overtake the LAUNCHED entry
        deadline = asyncio.get_running_loop().time() + self.launch_wait_seconds
        while asyncio.get_running_loop().time() < deadline:
            log = await self.store.get_log(job_id)
            if log is not None and log.status() != JobStatus.SUBMITTED:
                return
            await asyncio.sleep(0.01)
        logger.warning(f"Cluster job {job_id} still not launched, sending callbacks anyway")

    async def _run(self, job: ClusterJob, array_index: Optional[int]) -> None:
        job_id = job.id_or_raise
        try:
            out_path = job.out_path(self.commands_config.log_dir, array_index)
            await asyncio.to_thread(out_path.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(out_path.write_text, FAKE_OUTPUT, encoding="utf-8")

            await self._wait_for_launch(job_id)

            base = f"{self.commands_config.webhost}/api/v1/cluster/jobs/{job_id}"
            params = {"array_index": "" if array_index is None else str(array_index)}
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers(),
                transport=self.transport,
            ) as client:
                response = await client.post(f"{base}/started", params=params)
                response.raise_for_status()
                response = await client.post(f"{base}/ended", params={**params, "exit_code": "0"})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Load-test callback failed for cluster job {job_id}[{array_index}]: {e}")
        except OSError as e:
            logger.error(f"Load-test output write failed for cluster job {job_id}[{array_index}]: {e}")

    async def drain(self) -> None:
        """Wait for every pending callback task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def waiting_reason(self, job: ClusterJob, launch_result: LaunchResult) -> Optional[str]:
        return "no one cares"

    async def cancel(self, jobs: List[ClusterJob]) -> None:
        pass

    async def job_result(self, job: ClusterJob, array_index: Optional[int]) -> JobResult:
        out = await self.read_output(job, array_index)
        return JobResult(type=ResultType.SUCCESS, out=out)


__all__ = ["FAKE_OUTPUT", "LoadTestingBackend"]
