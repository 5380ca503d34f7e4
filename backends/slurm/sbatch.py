# ============================================================================
# SLURM BACKEND
# ============================================================================
# STATUS: Backend - Real HPC scheduler
# PURPOSE: Launch, cancel and inspect cluster jobs with sbatch/scancel/squeue
# CREATED: 13 MAR 2026
# ============================================================================
"""
SLURM Backend

Launch flow:
    1. Render the launch template (job args become #SBATCH directives,
       dependencies become --dependency=afterany:..., array jobs get
       --array=1-N[%bundle]) and stage it as launch-<id>.sh
    2. Give up quietly if the job was canceled in the meantime
    3. Run sbatch --output=<mask> launch-<id>.sh
    4. Read the native id from "Submitted batch job N" on the last
       non-blank console line

Output files are read back (and deleted) when the job ends. A
"slurmstepd: error: *** JOB n ON host CANCELLED AT t ***" line marks the
result as canceled.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from core.config.defaults import SlurmDefaults
from core.contracts import ClusterMode, ResultType
from core.errors import LaunchFailedError, ValidationFailedError
from core.gres import Gres
from core.models import ClusterJob, JobResult, LaunchResult
from orchestrator.engine.commands import CommandsConfig, FileInfo
from repositories.base import ClusterJobStore
from backends.base import ClusterBackend, ClusterQueues
from backends.executor import Command, CommandExecutor, LocalCommandExecutor
from backends.slurm.squeue import SQueue
from backends.slurm.templates import SlurmTemplateEngine, TemplateRenderError

logger = logging.getLogger(__name__)

# Arguments the backend sets itself
BANNED_ARGS = {"output", "error", "chdir", "array"}

# Arguments users may pass through
SUPPORTED_ARGS = {"cpus-per-task", "mem", "time", "gres", "partition"}

DEPENDENCY_ID = re.compile(r"^\d+(_\d+)?$")

SUBMITTED_PREFIX = "Submitted batch job "

# e.g. slurmstepd-host: error: *** JOB 13 ON host CANCELLED AT 2020-07-16T11:37:37 DUE TO TIME LIMIT ***
CANCEL_PATTERN = re.compile(
    r"slurmstepd(-\w+)?: error: \*\*\* JOB \d+ ON \w+ CANCELLED AT [0-9:T-]+ (.*) ?\*\*\*"
)


def parse_cancel_reason(out: Optional[str]) -> Optional[str]:
    """
    Find SLURM's cancel line in job output.

    Returns:
        None if the job was not canceled, else the reason ("" when SLURM gave none)
    """
    if not out:
        return None
    for line in out.splitlines():
        match = CANCEL_PATTERN.fullmatch(line.strip())
        if match:
            return match.group(2).strip()
    return None


def parse_launch_id(console: List[str]) -> Optional[int]:
    """Native job id from sbatch console output, or None."""
    lines = [line.strip() for line in console if line.strip()]
    if not lines or not lines[-1].startswith(SUBMITTED_PREFIX):
        return None
    try:
        return int(lines[-1].split(" ")[-1])
    except ValueError:
        return None


class SlurmBackend(ClusterBackend):
    """Runs cluster jobs on a SLURM cluster."""

    cluster_mode = ClusterMode.SLURM

    def __init__(
        self,
        config: SlurmDefaults,
        commands_config: CommandsConfig,
        store: ClusterJobStore,
        executor: Optional[CommandExecutor] = None,
    ):
        super().__init__(commands_config, store)
        self.config = config
        self.executor = executor or LocalCommandExecutor()
        self.templates = SlurmTemplateEngine(config.templates_dir)
        self.squeue = SQueue(self.executor, config)

    @property
    def queues(self) -> ClusterQueues:
        return ClusterQueues(cpu=list(self.config.cpu_queues), gpu=list(self.config.gpu_queues))

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self, job: ClusterJob) -> None:
        args = job.args_parsed

        banned = sorted({name for name, _ in args if name in BANNED_ARGS})
        if banned:
            raise ValidationFailedError(
                f"The sbatch argument(s) {banned} are set automatically, "
                f"no need to specify them explicitly"
            )

        unsupported = [
            f"{name}={value}" if name is not None else value
            for name, value in args
            if name not in SUPPORTED_ARGS
        ]
        if unsupported:
            raise ValidationFailedError(f"unsupported sbatch argument(s): {unsupported}")

        for name, value in args:
            if name == "gres":
                try:
                    Gres.parse_all(value)
                except ValueError as e:
                    raise ValidationFailedError(str(e)) from e

    def validate_dependency(self, dep_id: str) -> None:
        if not DEPENDENCY_ID.match(dep_id):
            raise ValidationFailedError(f"invalid SLURM dependency id: {dep_id}")

    # =========================================================================
    # LAUNCH
    # =========================================================================

    def launch_path(self, job: ClusterJob) -> Path:
        return self.commands_config.batch_dir / f"launch-{job.id_or_raise}.sh"

    def cleanup_paths(self, job: ClusterJob) -> List[Path]:
        return [self.launch_path(job)]

    def build_script(self, job: ClusterJob, dep_ids: List[str], script_path: Path) -> str:
        """Render the launch template for a job."""
        values = job.arg_values()
        if dep_ids:
            values["dependency"] = "afterany:" + ",".join(dep_ids)
        if job.array_size is not None:
            bundle = job.commands.bundle_size
            values["array"] = f"1-{job.array_size}" + (f"%{bundle}" if bundle else "")
        if job.cluster_name is not None:
            values["name"] = job.cluster_name
        if job.type is not None:
            values["type"] = job.type
        values["commands"] = f'"{script_path}"'

        try:
            return self.templates.render(job.template, job=values)
        except TemplateRenderError as e:
            raise ValidationFailedError(str(e), job_id=job.job_id) from e

    async def launch(
        self,
        job: ClusterJob,
        dep_ids: List[str],
        script_path: Path,
    ) -> Optional[LaunchResult]:
        script = self.build_script(job, dep_ids, script_path)
        launch_path = self.launch_path(job)
        await self.stage([], [FileInfo(launch_path, script, executable=True)])

        sbatch = Command(
            self.config.cmd_sbatch,
            [f"--output={job.out_path_mask(self.commands_config.log_dir)}", str(launch_path)],
            env={var.name: var.value for var in job.env},
        )

        # last chance to abort before SLURM gets the job
        log = await self.store.get_log(job.id_or_raise)
        if log is not None and log.was_canceled():
            logger.info(f"Cluster job {job.job_id} was canceled before sbatch, not submitting")
            return None

        result = await self.executor.exec(sbatch)
        launch_id = parse_launch_id(result.console)
        if launch_id is None:
            raise LaunchFailedError(
                "unable to read job id from sbatch output",
                console=result.console,
                command=sbatch.to_shell_safe_string(),
                job_id=job.job_id,
            )

        logger.info(f"Cluster job {job.job_id} submitted to SLURM as {launch_id}")
        return LaunchResult(
            job_id=launch_id,
            out="\n".join(result.console),
            command=sbatch.to_shell_safe_string(),
            script=script,
        )

    # =========================================================================
    # CANCEL / STATUS / RESULTS
    # =========================================================================

    async def cancel(self, jobs: List[ClusterJob]) -> None:
        for job in jobs:
            log = await self.store.get_log(job.id_or_raise)
            launch_id = log.launch_result.job_id if log and log.launch_result else None
            if launch_id is None:
                continue

            scancel = Command(self.config.cmd_scancel, [str(launch_id)])
            logger.debug(f"Calling scancel for cluster job {job.job_id}, SLURM id {launch_id}")
            result = await self.executor.exec(scancel)
            logger.debug(
                f"scancel result for cluster job {job.job_id} (SLURM id {launch_id}): "
                f"exit={result.exit_code} console={result.console}"
            )

    async def waiting_reason(self, job: ClusterJob, launch_result: LaunchResult) -> Optional[str]:
        if launch_result.job_id is None:
            return None
        reason = await self.squeue.reason(launch_result.job_id)
        if reason is None:
            return None
        return f"Job has been submitted to SLURM. The SLURM status is: {reason.name}: {reason.description}"

    async def job_result(self, job: ClusterJob, array_index: Optional[int]) -> JobResult:
        out = await self.read_output(job, array_index)
        cancel_reason = parse_cancel_reason(out)
        if cancel_reason is not None:
            return JobResult(type=ResultType.CANCELED, out=out, cancel_reason=cancel_reason or None)
        return JobResult(type=ResultType.SUCCESS, out=out)


__all__ = [
    "BANNED_ARGS",
    "SUPPORTED_ARGS",
    "CANCEL_PATTERN",
    "parse_cancel_reason",
    "parse_launch_id",
    "SlurmBackend",
]
