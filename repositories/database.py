# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: One psycopg3 async pool for the cluster job store
# CREATED: 09 MAR 2026
# ============================================================================
"""
Database Connection Pool

The PostgreSQL store is optional. When neither DATABASE_URL nor
POSTGRES_HOST is set, main.py falls back to the in-memory store and this
module is never touched.

    pool = await init_pool()
    store = PostgresClusterJobStore(pool)
    ...
    await close_pool()

Pool bounds come from CLUSTER_DB_POOL_MIN / CLUSTER_DB_POOL_MAX.
"""

import os
import logging
from typing import Optional

from psycopg import sql
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

_pool: Optional[AsyncConnectionPool] = None


def is_database_configured() -> bool:
    return bool(os.environ.get("DATABASE_URL") or os.environ.get("POSTGRES_HOST"))


def _conninfo_from_env() -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    return make_conninfo(
        host=os.environ.get("POSTGRES_HOST", "localhost"),
        port=os.environ.get("POSTGRES_PORT", "5432"),
        dbname=os.environ.get("POSTGRES_DB", "postgres"),
        user=os.environ.get("POSTGRES_USER", "postgres"),
        password=os.environ.get("POSTGRES_PASSWORD", ""),
        sslmode=os.environ.get("POSTGRES_SSLMODE", "prefer"),
    )


def _describe(conninfo: str) -> str:
    """host:port/dbname, without credentials."""
    params = conninfo_to_dict(conninfo)
    return f"{params.get('host', '?')}:{params.get('port', '5432')}/{params.get('dbname', '?')}"


async def init_pool(conninfo: Optional[str] = None) -> AsyncConnectionPool:
    """
    Open the process-wide pool. Calling it again returns the open pool.

    Args:
        conninfo: Connection string, read from the environment if omitted
    """
    global _pool

    if _pool is not None:
        return _pool

    conninfo = conninfo or _conninfo_from_env()
    min_size = int(os.environ.get("CLUSTER_DB_POOL_MIN", "1"))
    max_size = int(os.environ.get("CLUSTER_DB_POOL_MAX", "10"))

    pool = AsyncConnectionPool(conninfo=conninfo, min_size=min_size, max_size=max_size, open=False)
    await pool.open()
    _pool = pool

    logger.info(f"Connected to {_describe(conninfo)} (pool {min_size}-{max_size})")
    return _pool


async def get_pool() -> AsyncConnectionPool:
    return _pool if _pool is not None else await init_pool()


async def close_pool() -> None:
    global _pool

    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("Connection pool closed")


# ============================================================================
# TABLES
# ============================================================================

SCHEMA = os.environ.get("CLUSTER_DB_SCHEMA", "clusterapp")

# Compose into queries with sql.SQL("... {}").format(TABLE_...)
TABLE_CLUSTER_JOBS = sql.Identifier(SCHEMA, "cluster_jobs")
TABLE_CLUSTER_JOB_LOGS = sql.Identifier(SCHEMA, "cluster_job_logs")
TABLE_OWNER_NOTIFICATIONS = sql.Identifier(SCHEMA, "cluster_owner_notifications")


__all__ = [
    "is_database_configured",
    "init_pool",
    "get_pool",
    "close_pool",
    "SCHEMA",
    "TABLE_CLUSTER_JOBS",
    "TABLE_CLUSTER_JOB_LOGS",
    "TABLE_OWNER_NOTIFICATIONS",
]
