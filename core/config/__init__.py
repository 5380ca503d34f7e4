# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 04 MAR 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the cluster job
orchestrator.
"""

from core.config.defaults import (
    WebDefaults,
    SlurmDefaults,
    StandaloneDefaults,
    ContainerDefaults,
    ClusterDefaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "WebDefaults",
    "SlurmDefaults",
    "StandaloneDefaults",
    "ContainerDefaults",
    "ClusterDefaults",
    "get_defaults",
    "reset_defaults",
]
