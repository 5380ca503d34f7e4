# ============================================================================
# API MODULE
# ============================================================================
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for cluster job submission and callbacks
# CREATED: 17 MAR 2026
# ============================================================================
"""
API Module

FastAPI routes for the cluster job orchestrator.
"""

from .routes import router, set_services
from .schemas import (
    ClusterJobSubmit,
    SubmitResponse,
    CancelResponse,
    JobLogResponse,
)

__all__ = [
    "router",
    "set_services",
    "ClusterJobSubmit",
    "SubmitResponse",
    "CancelResponse",
    "JobLogResponse",
]
