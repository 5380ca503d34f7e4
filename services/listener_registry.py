# ============================================================================
# LISTENER REGISTRY
# ============================================================================
# STATUS: Core - Pub/sub for cluster job lifecycle events
# PURPOSE: Fan job events out to listeners, and owner completion callbacks
# CREATED: 15 MAR 2026
# ============================================================================
"""
Listener Registry

Two kinds of subscribers:

    ClusterJobListener - sees every job event (submit, start, array
                         element start/end, end). Any number of them.
    OwnerListener      - one per owner id (pipeline stage or session),
                         told once when every job of that owner is done.

Registration, removal and iteration may happen concurrently from any
thread. Iteration works on snapshots, so listeners may unregister
themselves while being notified.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from core.contracts import ResultType
from core.models import ClusterJob

logger = logging.getLogger(__name__)


class ClusterJobListener:
    """Receives job lifecycle events. Override what you need."""

    async def on_submit(self, job: ClusterJob) -> None:
        pass

    async def on_start(self, owner_id: Optional[str], job_id: str) -> None:
        pass

    async def on_start_array(
        self,
        owner_id: Optional[str],
        job_id: str,
        array_index: int,
        num_started: int,
    ) -> None:
        pass

    async def on_end_array(
        self,
        owner_id: Optional[str],
        job_id: str,
        array_index: int,
        num_ended: int,
        num_canceled: int,
        num_failed: int,
    ) -> None:
        pass

    async def on_end(self, owner_id: Optional[str], job_id: str, result_type: ResultType) -> None:
        pass


class OwnerListener(ABC):
    """Told once when all jobs of an owner have reached a terminal status."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Registry key, stored on jobs as owner_listener_id."""

    @abstractmethod
    async def ended(self, owner_id: str, result_type: ResultType) -> None:
        """All jobs of owner_id are done. result_type is the most recent job's result."""


class ListenerRegistry:
    """Thread-safe registry of job listeners and owner listeners."""

    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._listeners: Dict[int, ClusterJobListener] = {}
        self._owner_listeners: Dict[str, OwnerListener] = {}

    # =========================================================================
    # JOB LISTENERS
    # =========================================================================

    def add_listener(self, listener: ClusterJobListener) -> int:
        """
        Subscribe to all job events.

        Returns:
            Handle for remove_listener()
        """
        with self._lock:
            listener_id = next(self._ids)
            self._listeners[listener_id] = listener
            return listener_id

    def remove_listener(self, listener_id: int) -> bool:
        with self._lock:
            return self._listeners.pop(listener_id, None) is not None

    def listeners(self) -> List[ClusterJobListener]:
        """Snapshot of the current job listeners, in registration order."""
        with self._lock:
            return list(self._listeners.values())

    # =========================================================================
    # OWNER LISTENERS
    # =========================================================================

    def add_owner_listener(self, listener: OwnerListener) -> None:
        """
        Register an owner listener under its id.

        Raises:
            ValueError: If a different listener already uses the id
        """
        with self._lock:
            existing = self._owner_listeners.get(listener.id)
            if existing is not None and existing is not listener:
                raise ValueError(f"owner listener already registered: {listener.id}")
            self._owner_listeners[listener.id] = listener

    def find_owner_listener(self, listener_id: Optional[str]) -> Optional[OwnerListener]:
        if listener_id is None:
            return None
        with self._lock:
            return self._owner_listeners.get(listener_id)

    def remove_owner_listener(self, listener_id: str) -> bool:
        with self._lock:
            return self._owner_listeners.pop(listener_id, None) is not None

    def snapshot(self) -> Tuple[int, int]:
        """(job listener count, owner listener count)"""
        with self._lock:
            return len(self._listeners), len(self._owner_listeners)


__all__ = ["ClusterJobListener", "OwnerListener", "ListenerRegistry"]
