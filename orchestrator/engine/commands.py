# ============================================================================
# COMMAND RENDERER
# ============================================================================
# STATUS: Core - Script generation for cluster jobs
# PURPOSE: Turn a job's commands into staged shell scripts
# CREATED: 11 MAR 2026
# ============================================================================
"""
Command Renderer

Renders a ClusterJob's commands into files to stage and command lines to
queue on the backend.

Script commands:
    All commands go into commands-script-<id>.sh, run once (or once per
    array element). The queued line is the container's prelaunch lines
    plus one wrapped invocation of that file.

Grid commands:
    commands-grid-<id>.sh holds one branch per group, selected at runtime
    by SLURM_ARRAY_TASK_ID. Each command in a branch is wrapped on its
    own, and the file itself is invoked unwrapped.

Both files begin with a header that cds into the job directory and aborts
the whole job if that fails.

The submission script (batch-<id>.sh) tells the web host when the job
starts and, from an exit trap, when it ends and with which exit code.
"""

import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from core.config.defaults import ClusterDefaults
from core.models import ClusterJob, CommandsGrid, CommandsScript, ContainerProfile
from orchestrator.engine.container import container_wrapper, wrap

logger = logging.getLogger(__name__)

# Matches the opening line of one grid branch
_GRID_BRANCH = re.compile(r'^if \[ "\$SLURM_ARRAY_TASK_ID" -eq "(\d+)" \]; then$')


# ============================================================================
# CONFIG & RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class CommandsConfig:
    """Everything rendering needs from configuration."""
    shared_dir: Path
    webhost: str = "http://localhost:8000"
    callback_token: Optional[str] = None
    runtime: str = "singularity --quiet"
    gpu_queues: Tuple[str, ...] = ()
    profiles: Dict[str, ContainerProfile] = field(default_factory=dict)

    @property
    def batch_dir(self) -> Path:
        return self.shared_dir / "batch"

    @property
    def log_dir(self) -> Path:
        return self.shared_dir / "log"

    def profile(self, container_id: Optional[str]) -> Optional[ContainerProfile]:
        """
        Look up a container profile.

        Raises:
            ValueError: If the id is set but unknown
        """
        if container_id is None:
            return None
        try:
            return self.profiles[container_id]
        except KeyError:
            raise ValueError(f"unknown container profile: {container_id}") from None

    @classmethod
    def from_defaults(cls, defaults: ClusterDefaults) -> "CommandsConfig":
        return cls(
            shared_dir=defaults.web.shared_dir,
            webhost=defaults.web.webhost,
            callback_token=defaults.web.callback_token,
            runtime=defaults.container.runtime,
            gpu_queues=defaults.slurm.gpu_queues,
            profiles=dict(defaults.container.profiles),
        )


@dataclass(frozen=True)
class FileInfo:
    """A file to stage before launch."""
    path: Path
    text: str
    executable: bool = False


@dataclass(frozen=True)
class Rendered:
    """Command lines to queue plus the files they need."""
    commands: List[str]
    files: List[FileInfo]


# ============================================================================
# RENDERING
# ============================================================================

def batch_header(job: ClusterJob) -> str:
    """Header of every commands file: force the job directory or abort."""
    return (
        "#!/bin/bash\n"
        "\n"
        "# override SLURM's own submit dir, since SLURM won't know about the container filesystem\n"
        f'export SLURM_SUBMIT_DIR="{job.dir}"\n'
        "\n"
        "# change into the job folder, or abort immediately\n"
        f'cd "{job.dir}" || exit 1\n'
    )


def commands_path(job: ClusterJob, config: CommandsConfig) -> Path:
    """Path of the generated commands file."""
    return config.batch_dir / f"commands-{job.commands.type}-{job.id_or_raise}.sh"


def render(job: ClusterJob, config: CommandsConfig) -> Rendered:
    """
    Render a job's commands.

    Raises:
        ValueError: If the job names an unknown container profile
    """
    if isinstance(job.commands, CommandsScript):
        return _render_script(job, job.commands, config)
    if isinstance(job.commands, CommandsGrid):
        return _render_grid(job, job.commands, config)
    raise TypeError(f"unrecognized commands type: {type(job.commands).__name__}")


def _render_script(job: ClusterJob, commands: CommandsScript, config: CommandsConfig) -> Rendered:
    lines = [batch_header(job)]
    lines.extend(commands.commands)
    batch_file = FileInfo(
        path=commands_path(job, config),
        text="\n".join(lines) + "\n",
        executable=True,
    )

    queued: List[str] = []
    wrapper = None
    profile = config.profile(job.container_id)
    if profile is not None:
        queued.extend(profile.prelaunch_commands)
        wrapper = container_wrapper(job, profile, config.runtime, config.shared_dir, config.gpu_queues)

    queued.append(wrap(f'"{batch_file.path}"', wrapper))
    return Rendered(commands=queued, files=[batch_file])


def _render_grid(job: ClusterJob, commands: CommandsGrid, config: CommandsConfig) -> Rendered:
    queued: List[str] = []
    wrapper = None
    profile = config.profile(job.container_id)
    if profile is not None:
        queued.extend(profile.prelaunch_commands)
        wrapper = container_wrapper(job, profile, config.runtime, config.shared_dir, config.gpu_queues)

    lines = [batch_header(job)]
    for group_index, group in enumerate(commands.commands):
        array_id = group_index + 1
        lines.append(f'if [ "$SLURM_ARRAY_TASK_ID" -eq "{array_id}" ]; then')
        for command in group:
            lines.append("\t" + wrap(command, wrapper))
        lines.append("fi")

    batch_file = FileInfo(
        path=commands_path(job, config),
        text="\n".join(lines) + "\n",
        executable=True,
    )

    # the branches are already wrapped
    queued.append(f'"{batch_file.path}"')
    return Rendered(commands=queued, files=[batch_file])


def files_to_delete(job: ClusterJob, config: CommandsConfig) -> List[Path]:
    """Generated files to remove once the job has ended."""
    return [commands_path(job, config)]


def parse_grid_script(text: str) -> List[List[str]]:
    """Recover the command groups of a rendered grid file, in order."""
    groups: List[List[str]] = []
    current: Optional[List[str]] = None
    for line in text.splitlines():
        if _GRID_BRANCH.match(line):
            current = []
        elif line == "fi" and current is not None:
            groups.append(current)
            current = None
        elif current is not None and line.startswith("\t"):
            current.append(line[1:])
    return groups


# ============================================================================
# SUBMISSION SCRIPT
# ============================================================================

def _notify_command(job: ClusterJob, config: CommandsConfig, event: str, query: str = "") -> str:
    auth = ""
    if config.callback_token:
        auth = '-H "Authorization: Bearer $CLUSTERJOB_TOKEN" '
    url = (
        f"$CLUSTERJOB_WEBHOST/api/v1/cluster/jobs/$CLUSTERJOB_WEBID/{event}"
        f"?array_index=${{SLURM_ARRAY_TASK_ID:-}}{query}"
    )
    return f'curl -fsS -X POST {auth}"{url}"'


def submission_script(job: ClusterJob, rendered: Rendered, config: CommandsConfig) -> str:
    """
    Script handed to the backend for launch.

    The exit trap reports the script's exit code. Inside the trap string
    the code is escaped so it is read when the trap fires.
    """
    started = _notify_command(job, config, "started")
    ended = _notify_command(job, config, "ended", "&exit_code=\\$?").replace('"', '\\"')
    lines = [
        "#!/bin/bash",
        "",
        f'export CLUSTERJOB_WEBHOST="{config.webhost}"',
        f'export CLUSTERJOB_TOKEN="{config.callback_token or ""}"',
        f'export CLUSTERJOB_WEBID="{job.id_or_raise}"',
        "",
        "# cd into any non-home folder before running any container commands",
        "cd /tmp || exit 1",
        "",
        started,
        f'trap "{ended}" exit',
        "",
    ]
    lines.extend(rendered.commands)
    return "\n".join(lines) + "\n"


__all__ = [
    "CommandsConfig",
    "FileInfo",
    "Rendered",
    "batch_header",
    "commands_path",
    "render",
    "files_to_delete",
    "parse_grid_script",
    "submission_script",
]
