# ============================================================================
# CLUSTER BACKEND CONTRACT
# ============================================================================
# STATUS: Core - Pluggable execution backend interface
# PURPOSE: Validation, staging, launch, cancel, results and cleanup
# CREATED: 12 MAR 2026
# ============================================================================
"""
Cluster Backend Contract

Every execution backend (SLURM, the local pseudo-cluster, the load-test
stub) implements ClusterBackend. The orchestrator only talks to this
interface.

Rules every implementation follows:
- validate() and validate_dependency() only check formats, no I/O
- stage() is idempotent
- job_result() always returns a JobResult, even when the job left no output
- delete_files() never raises
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from core.contracts import ClusterMode
from core.models import ClusterJob, JobResult, LaunchResult
from orchestrator.engine.commands import CommandsConfig, FileInfo
from repositories.base import ClusterJobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterQueues:
    """Queue (partition) names offered to users."""
    cpu: List[str] = field(default_factory=list)
    gpu: List[str] = field(default_factory=list)


class ClusterBackend(ABC):
    """Interface implemented by each execution backend."""

    cluster_mode: ClusterMode

    def __init__(self, commands_config: CommandsConfig, store: ClusterJobStore):
        self.commands_config = commands_config
        self.store = store

    @property
    def queues(self) -> ClusterQueues:
        return ClusterQueues()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @abstractmethod
    def validate(self, job: ClusterJob) -> None:
        """
        Check a job before anything is persisted.

        Raises:
            ValidationFailedError: If user input makes the job unrunnable
        """

    @abstractmethod
    def validate_dependency(self, dep_id: str) -> None:
        """Check one resolved dependency id (<nativeId> or <nativeId>_<index>)."""

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def stage(self, folders: Iterable[Path], files: Iterable[FileInfo]) -> None:
        """Create folders and write files, marking executables."""
        await asyncio.to_thread(self._stage_local, list(folders), list(files))

    @staticmethod
    def _stage_local(folders: List[Path], files: List[FileInfo]) -> None:
        for folder in folders:
            folder.mkdir(parents=True, exist_ok=True)
        for info in files:
            info.path.parent.mkdir(parents=True, exist_ok=True)
            info.path.write_text(info.text, encoding="utf-8")
            if info.executable:
                info.path.chmod(info.path.stat().st_mode | 0o100)

    @abstractmethod
    async def launch(
        self,
        job: ClusterJob,
        dep_ids: List[str],
        script_path: Path,
    ) -> Optional[LaunchResult]:
        """
        Hand a job to the backend.

        Returns:
            LaunchResult, or None if nothing was launched

        Raises:
            LaunchFailedError: If the backend refused the job
        """

    @abstractmethod
    async def cancel(self, jobs: List[ClusterJob]) -> None:
        """Best-effort request to cancel launched jobs."""

    @abstractmethod
    async def job_result(self, job: ClusterJob, array_index: Optional[int]) -> JobResult:
        """Result of a finished job or array element."""

    async def waiting_reason(self, job: ClusterJob, launch_result: LaunchResult) -> Optional[str]:
        """Why a launched job has not started yet, if the backend knows."""
        return None

    def cleanup_paths(self, job: ClusterJob) -> List[Path]:
        """Extra backend files to delete once the job has ended."""
        return []

    async def delete_files(self, paths: Iterable[Path]) -> None:
        """Delete files, logging failures instead of raising."""
        for path in paths:
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")

    async def drain(self) -> None:
        """Wait for background work the backend started itself. Nothing by default."""

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def read_output(self, job: ClusterJob, array_index: Optional[int]) -> Optional[str]:
        """Read and delete a job's output file, or None if it can't be read."""
        out_path = job.out_path(self.commands_config.log_dir, array_index)
        try:
            out = await asyncio.to_thread(out_path.read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            # the job may simply have written nothing
            logger.warning(f"Failed to read cluster job output from {out_path}: {e}")
            return None
        await self.delete_files([out_path])
        return out


__all__ = ["ClusterQueues", "ClusterBackend"]
