# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for web callbacks, backends and containers
# CREATED: 04 MAR 2026
# ============================================================================
"""
Configuration Defaults

Provides defaults for the cluster job orchestrator. Every value can be
overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Container profiles loaded from a YAML file
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from core.contracts import ClusterMode
from core.models.container import ContainerProfile


def _env_list(name: str, default: str = "") -> Tuple[str, ...]:
    """Read a comma-separated env var into a tuple, dropping blanks."""
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class WebDefaults:
    """
    Defaults for the web side of the job callbacks.

    Jobs call back to ``webhost`` when they start and end.
    """
    shared_dir: Path = Path("/tmp/cluster-shared")
    webhost: str = "http://localhost:8000"
    callback_token: Optional[str] = None

    @property
    def batch_dir(self) -> Path:
        """Where generated scripts are staged."""
        return self.shared_dir / "batch"

    @property
    def log_dir(self) -> Path:
        """Where job output files land."""
        return self.shared_dir / "log"

    @classmethod
    def from_env(cls) -> "WebDefaults":
        """Create from environment variables."""
        return cls(
            shared_dir=Path(os.getenv("CLUSTER_SHARED_DIR", "/tmp/cluster-shared")),
            webhost=os.getenv("CLUSTER_WEBHOST", "http://localhost:8000"),
            callback_token=os.getenv("CLUSTER_CALLBACK_TOKEN") or None,
        )


@dataclass(frozen=True)
class SlurmDefaults:
    """Defaults for the SLURM backend."""
    cmd_sbatch: str = "sbatch"
    cmd_scancel: str = "scancel"
    cmd_squeue: str = "squeue"
    gpu_queues: Tuple[str, ...] = ()
    cpu_queues: Tuple[str, ...] = ()
    templates_dir: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "SlurmDefaults":
        """Create from environment variables."""
        templates_dir = os.getenv("SLURM_TEMPLATES_DIR")
        return cls(
            cmd_sbatch=os.getenv("SLURM_CMD_SBATCH", "sbatch"),
            cmd_scancel=os.getenv("SLURM_CMD_SCANCEL", "scancel"),
            cmd_squeue=os.getenv("SLURM_CMD_SQUEUE", "squeue"),
            gpu_queues=_env_list("SLURM_GPU_QUEUES"),
            cpu_queues=_env_list("SLURM_CPU_QUEUES"),
            templates_dir=Path(templates_dir) if templates_dir else None,
        )


@dataclass(frozen=True)
class StandaloneDefaults:
    """
    Defaults for the local pseudo-cluster.

    Resources are what the pseudo-cluster hands out to jobs, not what the
    machine really has.
    """
    cpus: int = os.cpu_count() or 1
    memory_gib: int = 8
    gpus: int = 0
    cancel_grace_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "StandaloneDefaults":
        """Create from environment variables."""
        return cls(
            cpus=int(os.getenv("STANDALONE_CPUS", os.cpu_count() or 1)),
            memory_gib=int(os.getenv("STANDALONE_MEMORY_GIB", 8)),
            gpus=int(os.getenv("STANDALONE_GPUS", 0)),
            cancel_grace_seconds=float(os.getenv("STANDALONE_KILL_GRACE_SEC", 10.0)),
        )


@dataclass(frozen=True)
class ContainerDefaults:
    """
    Defaults for sandboxed execution.

    Profiles file format (YAML):

        profiles:
          pyp:
            sif_path: /opt/images/pyp.sif
            binds: [/scratch]
            prelaunch_commands:
              - mkdir -p /scratch/pyp
    """
    runtime: str = "singularity --quiet"
    profiles: Dict[str, ContainerProfile] = field(default_factory=dict)

    def profile(self, container_id: Optional[str]) -> Optional[ContainerProfile]:
        """
        Look up a profile by id.

        Raises:
            ValueError: If the id is set but unknown
        """
        if container_id is None:
            return None
        try:
            return self.profiles[container_id]
        except KeyError:
            raise ValueError(f"unknown container profile: {container_id}") from None

    @staticmethod
    def load_profiles(path: Path) -> Dict[str, ContainerProfile]:
        """Load container profiles from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        profiles = {}
        for profile_id, body in (data.get("profiles") or {}).items():
            profiles[profile_id] = ContainerProfile(id=profile_id, **(body or {}))
        return profiles

    @classmethod
    def from_env(cls) -> "ContainerDefaults":
        """Create from environment variables."""
        profiles_file = os.getenv("CONTAINER_PROFILES_FILE")
        return cls(
            runtime=os.getenv("CONTAINER_RUNTIME", "singularity --quiet"),
            profiles=cls.load_profiles(Path(profiles_file)) if profiles_file else {},
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class ClusterDefaults:
    """Container for all default configurations."""
    mode: ClusterMode = ClusterMode.STANDALONE
    web: WebDefaults = field(default_factory=WebDefaults)
    slurm: SlurmDefaults = field(default_factory=SlurmDefaults)
    standalone: StandaloneDefaults = field(default_factory=StandaloneDefaults)
    container: ContainerDefaults = field(default_factory=ContainerDefaults)

    @classmethod
    def from_env(cls) -> "ClusterDefaults":
        """Create all defaults from environment variables."""
        return cls(
            mode=ClusterMode(os.getenv("CLUSTER_MODE", ClusterMode.STANDALONE.value)),
            web=WebDefaults.from_env(),
            slurm=SlurmDefaults.from_env(),
            standalone=StandaloneDefaults.from_env(),
            container=ContainerDefaults.from_env(),
        )


_defaults: Optional[ClusterDefaults] = None


def get_defaults() -> ClusterDefaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = ClusterDefaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "WebDefaults",
    "SlurmDefaults",
    "StandaloneDefaults",
    "ContainerDefaults",
    "ClusterDefaults",
    "get_defaults",
    "reset_defaults",
]
