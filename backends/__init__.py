# ============================================================================
# BACKENDS PACKAGE
# ============================================================================
# STATUS: Backend - Execution backend selection
# PURPOSE: Export backends and build the configured one
# CREATED: 12 MAR 2026
# ============================================================================
"""
Execution backends.

    slurm        - real SLURM cluster (sbatch / scancel / squeue)
    standalone   - local machine pretending to be a cluster
    load_testing - no-op jobs that end immediately
"""

import logging

from core.config.defaults import ClusterDefaults
from core.contracts import ClusterMode
from orchestrator.engine.commands import CommandsConfig
from repositories.base import ClusterJobStore
from backends.base import ClusterBackend, ClusterQueues
from backends.executor import Command, CommandExecutor, CommandResult, LocalCommandExecutor
from backends.load_testing import LoadTestingBackend
from backends.slurm import SlurmBackend
from backends.standalone import StandaloneBackend

logger = logging.getLogger(__name__)


def create_backend(defaults: ClusterDefaults, store: ClusterJobStore) -> ClusterBackend:
    """Build the backend selected by CLUSTER_MODE."""
    commands_config = CommandsConfig.from_defaults(defaults)

    if defaults.mode == ClusterMode.SLURM:
        backend = SlurmBackend(defaults.slurm, commands_config, store)
    elif defaults.mode == ClusterMode.STANDALONE:
        backend = StandaloneBackend(defaults.standalone, commands_config, store)
    elif defaults.mode == ClusterMode.LOAD_TESTING:
        backend = LoadTestingBackend(commands_config, store)
    else:
        raise ValueError(f"Unknown cluster mode: {defaults.mode}")

    logger.info(f"Cluster backend: {backend.cluster_mode.value}")
    return backend


__all__ = [
    "ClusterBackend",
    "ClusterQueues",
    "Command",
    "CommandExecutor",
    "CommandResult",
    "LocalCommandExecutor",
    "LoadTestingBackend",
    "SlurmBackend",
    "StandaloneBackend",
    "create_backend",
]
