# ============================================================================
# SLURM QUEUE STATUS
# ============================================================================
# STATUS: Backend - squeue wrapper
# PURPOSE: Ask SLURM why a queued job is still waiting
# CREATED: 13 MAR 2026
# ============================================================================
"""
SLURM Queue Status

Wraps ``squeue -j <id> -h --format=...`` and maps job reason codes to
readable descriptions.

See https://slurm.schedmd.com/squeue.html#SECTION_JOB-REASON-CODES
"""

import logging
from enum import Enum
from typing import Optional

from core.config.defaults import SlurmDefaults
from backends.executor import Command, CommandExecutor

logger = logging.getLogger(__name__)

_INVALID_JOB_ID = "slurm_load_jobs error: Invalid job id specified"


class JobReason(Enum):
    """SLURM job reason codes, valued by their description."""
    AssociationJobLimit = "The job's association has reached its maximum job count."
    AssociationResourceLimit = "The job's association has reached some resource limit."
    AssociationTimeLimit = "The job's association has reached its time limit."
    BadConstraints = "The job's constraints can not be satisfied."
    BeginTime = "The job's earliest start time has not yet been reached."
    Cleaning = "The job is being requeued and still cleaning up from its previous execution."
    Dependency = "This job is waiting for a dependent job to complete."
    FrontEndDown = "No front end node is available to execute this job."
    InactiveLimit = "The job reached the system InactiveLimit."
    InvalidAccount = "The job's account is invalid."
    InvalidQOS = "The job's QOS is invalid."
    JobHeldAdmin = "The job is held by a system administrator."
    JobHeldUser = "The job is held by the user."
    JobLaunchFailure = (
        "The job could not be launched. This may be due to a file system problem, "
        "invalid program name, etc."
    )
    Licenses = "The job is waiting for a license."
    NodeDown = "A node required by the job is down."
    NonZeroExitCode = "The job terminated with a non-zero exit code."
    PartitionDown = "The partition required by this job is in a DOWN state."
    PartitionInactive = "The partition required by this job is in an Inactive state and not able to start jobs."
    PartitionNodeLimit = (
        "The number of nodes required by this job is outside of its partition's current limits. "
        "Can also indicate that required nodes are DOWN or DRAINED."
    )
    PartitionTimeLimit = "The job's time limit exceeds its partition's current time limit."
    Priority = "One or more higher priority jobs exist for this partition or advanced reservation."
    Prolog = "Its PrologSlurmctld program is still running."
    QOSJobLimit = "The job's QOS has reached its maximum job count."
    QOSResourceLimit = "The job's QOS has reached some resource limit."
    QOSTimeLimit = "The job's QOS has reached its time limit."
    ReqNodeNotAvail = (
        "Some node specifically required by the job is not currently available. "
        "The node may currently be in use, reserved for another job, in an advanced reservation, "
        "DOWN, DRAINED, or not responding."
    )
    Reservation = "The job is waiting its advanced reservation to become available."
    Resources = "The job is waiting for resources to become available."
    SystemFailure = "Failure of the Slurm system, a file system, the network, etc."
    TimeLimit = "The job exhausted its time limit."
    QOSUsageThreshold = "Required QOS threshold has been breached."
    WaitingForScheduling = (
        "No reason has been set for this job yet. "
        "Waiting for the scheduler to determine the appropriate reason."
    )

    @property
    def description(self) -> str:
        return self.value

    @classmethod
    def parse(cls, code: str) -> Optional["JobReason"]:
        return cls.__members__.get(code.strip())


class SQueue:
    """Queries squeue for one job at a time."""

    def __init__(self, executor: CommandExecutor, config: SlurmDefaults):
        self.executor = executor
        self.config = config

    async def _call(self, launch_id: int, output_format: str) -> Optional[str]:
        command = Command(
            self.config.cmd_squeue,
            ["-j", str(launch_id), "-h", f"--format={output_format}"],
        )
        result = await self.executor.exec(command)
        if not result.console:
            return None
        first = result.console[0]
        if first == _INVALID_JOB_ID:
            return None
        return first

    async def is_active(self, launch_id: int) -> bool:
        """True if SLURM still knows about the job (queued or running)."""
        return await self._call(launch_id, "%T,%r") is not None

    async def reason(self, launch_id: int) -> Optional[JobReason]:
        out = await self._call(launch_id, "%r")
        if out is None:
            return None
        reason = JobReason.parse(out)
        if reason is None:
            logger.debug(f"Unrecognized SLURM job reason for {launch_id}: {out}")
        return reason


__all__ = ["JobReason", "SQueue"]
