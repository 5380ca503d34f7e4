# ============================================================================
# CLUSTER JOB MODEL
# ============================================================================
# STATUS: Core model - Job specification
# PURPOSE: Immutable description of one batch job submission
# CREATED: 05 MAR 2026
# EXPORTS: ClusterJob, EnvVar
# DEPENDENCIES: pydantic
# ============================================================================
"""
Cluster Job Model

A ClusterJob is what callers hand to the orchestrator: what to run, where,
with which scheduler arguments, and after which other jobs.

Maps to: cluster_jobs table (spec column, JSONB)

The job_id is assigned by the store on first persistence and never
changes afterwards. Everything else is fixed at construction.
"""

import shlex
from pathlib import Path
from typing import ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.errors import JobStateError, ValidationFailedError
from core.models.commands import Commands


class EnvVar(BaseModel):
    """An environment variable exported to the job."""
    name: str
    value: str

    model_config = {"frozen": True}


class ClusterJob(BaseModel):
    """
    Specification of one cluster job.

    Lifecycle:
        1. Built by the caller without a job_id
        2. Persisted by ClusterOrchestrator.submit(), which assigns job_id
        3. Read back from the store for every later callback
    """

    # =========================================================================
    # SQL DDL METADATA
    # =========================================================================
    __sql_table__: ClassVar[str] = "cluster_jobs"
    __sql_primary_key__: ClassVar[List[str]] = ["job_id"]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_cluster_jobs_owner", ["owner_id"]),
        ("idx_cluster_jobs_created", ["created_at"]),
    ]

    job_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Store-assigned id, set exactly once"
    )

    container_id: Optional[str] = Field(
        default=None,
        description="Container profile to run the commands in"
    )
    commands: Commands
    dir: Path = Field(..., description="Working directory of the job")
    env: List[EnvVar] = Field(default_factory=list)
    args: List[str] = Field(
        default_factory=list,
        description="Scheduler arguments, e.g. --cpus-per-task=4"
    )
    deps: List[str] = Field(
        default_factory=list,
        description="Job ids this job waits for, as <jobId> or <jobId>_<arrayIndex>"
    )

    # Ownership
    owner_id: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Pipeline stage or session that groups this job with others"
    )
    owner_listener_id: Optional[str] = Field(
        default=None,
        description="Registered OwnerListener notified when the owner's jobs all end"
    )

    # Display
    web_name: Optional[str] = None
    cluster_name: Optional[str] = Field(
        default=None,
        description="Name given to the backend's own job"
    )
    type: Optional[str] = None
    template: Optional[str] = Field(
        default=None,
        description="Launch template name (SLURM only)"
    )

    @property
    def id_or_raise(self) -> str:
        if self.job_id is None:
            raise JobStateError("cluster job has no id, it was never submitted")
        return self.job_id

    @property
    def is_array(self) -> bool:
        return self.commands.is_array

    @property
    def array_size(self) -> Optional[int]:
        return self.commands.array_size

    @property
    def args_parsed(self) -> List[Tuple[Optional[str], str]]:
        """
        Scheduler arguments as (name, value) pairs.

        "--mem=5G" becomes ("mem", "5G"). Tokens with no "=" keep a None name.

        Raises:
            ValidationFailedError: An argument does not parse as shell words
        """
        parsed: List[Tuple[Optional[str], str]] = []
        for arg in self.args:
            try:
                tokens = shlex.split(arg)
            except ValueError as e:
                raise ValidationFailedError(f"malformed argument {arg!r}: {e}", job_id=self.job_id) from e
            for token in tokens:
                if "=" in token:
                    name, value = token.split("=", 1)
                    parsed.append((name.lstrip("-"), value))
                else:
                    parsed.append((None, token))
        return parsed

    def arg_values(self) -> Dict[str, str]:
        """Named arguments only, last one wins."""
        return {name: value for name, value in self.args_parsed if name is not None}

    # =========================================================================
    # FILE PATHS
    # =========================================================================

    def batch_path(self, batch_dir: Path) -> Path:
        """Submission script written for this job."""
        return batch_dir / f"batch-{self.id_or_raise}.sh"

    def out_path(self, log_dir: Path, array_index: Optional[int] = None) -> Path:
        """Output file of the job, or of one array element."""
        if array_index is None:
            return log_dir / f"out-{self.id_or_raise}.log"
        return log_dir / f"out-{self.id_or_raise}.{array_index}.log"

    def out_path_mask(self, log_dir: Path) -> Path:
        """Output path pattern handed to the scheduler (%a is the array index)."""
        if self.is_array:
            return log_dir / f"out-{self.id_or_raise}.%a.log"
        return self.out_path(log_dir)


__all__ = ["EnvVar", "ClusterJob"]
