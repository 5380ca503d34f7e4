# ============================================================================
# SERVICES MODULE
# ============================================================================
# STATUS: Core - Collaborators of the orchestrator
# PURPOSE: Listener registry, stream log and lifecycle logging
# CREATED: 15 MAR 2026
# ============================================================================
"""
Services Module

Usage:
    from services import ListenerRegistry, LoggingListener

    registry = ListenerRegistry()
    registry.add_listener(LoggingListener())
"""

from .listener_registry import ClusterJobListener, ListenerRegistry, OwnerListener
from .stream_log import LoggingStreamLog, StreamLog
from .event_listener import LoggingListener

__all__ = [
    "ClusterJobListener",
    "ListenerRegistry",
    "OwnerListener",
    "StreamLog",
    "LoggingStreamLog",
    "LoggingListener",
]
