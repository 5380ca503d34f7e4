# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# STATUS: Core - Cluster job lifecycle
# PURPOSE: Submit, track, cancel and finalize cluster jobs
# CREATED: 16 MAR 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import ClusterOrchestrator

    orchestrator = ClusterOrchestrator(store, backend, registry, stream_log)
    job_id = await orchestrator.submit(job)
"""

from .cluster import ClusterOrchestrator

__all__ = ["ClusterOrchestrator"]
