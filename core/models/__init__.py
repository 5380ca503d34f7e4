# ============================================================================
# MODELS MODULE
# ============================================================================
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 06 MAR 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the cluster job orchestrator.
"""

from core.models.container import ContainerProfile
from core.models.commands import CommandsScript, CommandsGrid, Commands
from core.models.cluster_job import ClusterJob, EnvVar
from core.models.cluster_log import (
    ClusterJobLog,
    HistoryEntry,
    ArrayProgress,
    LaunchResult,
    JobResult,
    FailureEntry,
    now_ms,
)

__all__ = [
    # Container
    "ContainerProfile",
    # Commands
    "CommandsScript",
    "CommandsGrid",
    "Commands",
    # Job
    "ClusterJob",
    "EnvVar",
    # Log
    "ClusterJobLog",
    "HistoryEntry",
    "ArrayProgress",
    "LaunchResult",
    "JobResult",
    "FailureEntry",
    "now_ms",
]
