# ============================================================================
# CONTAINER WRAPPER
# ============================================================================
# STATUS: Core - Sandboxed execution command lines
# PURPOSE: Wrap job commands in a container runtime invocation
# CREATED: 11 MAR 2026
# ============================================================================
"""
Container Wrapper

Builds the command prefix that runs a command inside a container profile:

    singularity --quiet exec --no-home --bind="/a" --bind="/shared" [--nv]
        --pwd "/job/dir" "/images/app.sif" <command>

--no-home keeps the caller's home directory out of the sandbox. --nv is
added only when the job asks for a GPU, either with a gpu gres or by
naming a GPU partition.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from core.gres import Gres
from core.models import ClusterJob, ContainerProfile

logger = logging.getLogger(__name__)

Wrapper = Callable[[str], str]


def requests_gpu(job: ClusterJob, gpu_queues: Iterable[str] = ()) -> bool:
    """True if the job's scheduler args ask for a GPU."""
    gpu_queues = set(gpu_queues)
    for name, value in job.args_parsed:
        if name == "gres" and any(gres.is_gpu for gres in Gres.parse_all(value)):
            return True
        if name == "partition" and value in gpu_queues:
            return True
    return False


def container_wrapper(
    job: ClusterJob,
    profile: ContainerProfile,
    runtime: str,
    shared_dir: Path,
    gpu_queues: Iterable[str] = (),
) -> Wrapper:
    """Return a function that prefixes a command with the container invocation."""
    args = ["--no-home"]
    for path in profile.binds:
        args.append(f'--bind="{path}"')
    args.append(f'--bind="{shared_dir}"')

    if requests_gpu(job, gpu_queues):
        args.append("--nv")

    args.append(f'--pwd "{job.dir}"')

    prefix = " ".join([f"{runtime} exec", " ".join(args), f'"{profile.sif_path}"'])

    def _wrap(command: str) -> str:
        return f"{prefix} {command}"

    return _wrap


def wrap(command: str, *wrappers: Optional[Wrapper]) -> str:
    """Apply wrappers in order, skipping None."""
    for wrapper in wrappers:
        if wrapper is not None:
            command = wrapper(command)
    return command


__all__ = ["Wrapper", "requests_gpu", "container_wrapper", "wrap"]
