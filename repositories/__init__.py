# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# STATUS: Core - Persistence layer
# PURPOSE: Cluster job stores and database access
# CREATED: 09 MAR 2026
# ============================================================================
"""
Repositories Module

Provides persistence for cluster jobs behind the ClusterJobStore contract.
PostgreSQL via psycopg3 async with connection pooling, or in memory.

Usage:
    from repositories import PostgresClusterJobStore, get_pool

    pool = await get_pool()
    store = PostgresClusterJobStore(pool)
    job = await store.get_job(job_id)
"""

from .base import ClusterJobStore, new_job_id
from .memory_store import MemoryClusterJobStore
from .postgres_store import PostgresClusterJobStore
from .database import get_pool, init_pool, close_pool, is_database_configured
from .schema import ensure_schema

__all__ = [
    "ClusterJobStore",
    "new_job_id",
    "MemoryClusterJobStore",
    "PostgresClusterJobStore",
    "get_pool",
    "init_pool",
    "close_pool",
    "is_database_configured",
    "ensure_schema",
]
