# ============================================================================
# CLUSTER JOB SCHEMA
# ============================================================================
# STATUS: Core - DDL for the cluster job tables
# PURPOSE: Create the schema, tables and indexes if missing
# CREATED: 10 MAR 2026
# ============================================================================
"""
Cluster Job Schema

DDL for the PostgreSQL store. All statements are idempotent
(IF NOT EXISTS), so ensure_schema() is safe on every startup.

Log rows use array_index 0 for the job as a whole, since primary key
columns cannot be NULL. Array elements keep their 1-based index.
"""

import logging
from typing import List

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from .database import (
    SCHEMA,
    TABLE_CLUSTER_JOBS,
    TABLE_CLUSTER_JOB_LOGS,
    TABLE_OWNER_NOTIFICATIONS,
)

logger = logging.getLogger(__name__)


def schema_statements() -> List[sql.Composed]:
    """DDL statements in execution order."""
    return [
        sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA)),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            job_id TEXT PRIMARY KEY,
            owner_id TEXT,
            cluster_name TEXT,
            spec JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """).format(TABLE_CLUSTER_JOBS),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_cluster_jobs_owner ON {} (owner_id)").format(
            TABLE_CLUSTER_JOBS
        ),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            job_id TEXT NOT NULL,
            array_index INTEGER NOT NULL DEFAULT 0,
            history JSONB NOT NULL DEFAULT '[]'::jsonb,
            failures JSONB NOT NULL DEFAULT '[]'::jsonb,
            launch_result JSONB,
            submit_failure TEXT,
            result JSONB,
            progress_started INTEGER,
            progress_ended INTEGER,
            progress_canceled INTEGER,
            progress_failed INTEGER,
            PRIMARY KEY (job_id, array_index)
        )
        """).format(TABLE_CLUSTER_JOB_LOGS),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            owner_id TEXT NOT NULL,
            round_key TEXT NOT NULL,
            notified_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (owner_id, round_key)
        )
        """).format(TABLE_OWNER_NOTIFICATIONS),
    ]


async def ensure_schema(pool: AsyncConnectionPool) -> None:
    """Create the schema objects that do not exist yet."""
    async with pool.connection() as conn:
        for statement in schema_statements():
            await conn.execute(statement)
    logger.info(f"Cluster job schema ready in {SCHEMA}")


__all__ = ["schema_statements", "ensure_schema"]
