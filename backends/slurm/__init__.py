"""SLURM backend: sbatch launches, scancel, squeue reasons and launch templates."""

from backends.slurm.sbatch import SlurmBackend, parse_cancel_reason, parse_launch_id
from backends.slurm.squeue import JobReason, SQueue
from backends.slurm.templates import SlurmTemplateEngine, TemplateRenderError

__all__ = [
    "SlurmBackend",
    "parse_cancel_reason",
    "parse_launch_id",
    "JobReason",
    "SQueue",
    "SlurmTemplateEngine",
    "TemplateRenderError",
]
