# ============================================================================
# POSTGRES CLUSTER JOB STORE
# ============================================================================
# STATUS: Core - PostgreSQL implementation of ClusterJobStore
# PURPOSE: Durable cluster job records and logs with atomic updates
# CREATED: 10 MAR 2026
# ============================================================================
"""
PostgreSQL Cluster Job Store

Each ClusterJobStore operation is a single SQL statement, so the atomicity
the orchestrator relies on comes from PostgreSQL row locking:

- history appends use jsonb concatenation in an upsert
- the terminal append is an upsert whose UPDATE branch has a WHERE on the
  last history entry, so at most one caller gets a row back
- counter increments use UPDATE ... RETURNING
- owner claims use INSERT ... ON CONFLICT DO NOTHING RETURNING
"""

import logging
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.errors import JobNotFoundError
from core.models import (
    ArrayProgress,
    ClusterJob,
    ClusterJobLog,
    FailureEntry,
    HistoryEntry,
    JobResult,
    LaunchResult,
)
from .base import ClusterJobStore, new_job_id
from .database import TABLE_CLUSTER_JOBS, TABLE_CLUSTER_JOB_LOGS, TABLE_OWNER_NOTIFICATIONS

logger = logging.getLogger(__name__)

# Status values that end a history, including the legacy "finished"
_TERMINAL_STATUSES = ("ended", "abandoned", "finished")


def _index(array_index: Optional[int]) -> int:
    return 0 if array_index is None else array_index


def _entries(*entries: Any) -> Json:
    return Json([entry.model_dump(mode="json") for entry in entries])


class PostgresClusterJobStore(ClusterJobStore):
    """ClusterJobStore backed by PostgreSQL."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    # =========================================================================
    # JOB RECORDS
    # =========================================================================

    async def create_job(self, job: ClusterJob) -> ClusterJob:
        stored = job.model_copy(update={"job_id": new_job_id()})
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (job_id, owner_id, cluster_name, spec)
                VALUES (%(job_id)s, %(owner_id)s, %(cluster_name)s, %(spec)s)
                """).format(TABLE_CLUSTER_JOBS),
                {
                    "job_id": stored.job_id,
                    "owner_id": stored.owner_id,
                    "cluster_name": stored.cluster_name,
                    "spec": Json(stored.model_dump(mode="json", exclude={"job_id"})),
                },
            )
        logger.info(f"Created cluster job {stored.job_id} (owner={stored.owner_id})")
        return stored

    async def get_job(self, job_id: str) -> Optional[ClusterJob]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT job_id, spec FROM {} WHERE job_id = %s").format(TABLE_CLUSTER_JOBS),
                (job_id,),
            )
            row = await result.fetchone()
            return self._row_to_job(row) if row is not None else None

    async def get_jobs_by_owner(self, owner_id: str) -> List[ClusterJob]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT job_id, spec FROM {}
                WHERE owner_id = %s
                ORDER BY created_at, job_id
                """).format(TABLE_CLUSTER_JOBS),
                (owner_id,),
            )
            rows = await result.fetchall()
            return [self._row_to_job(row) for row in rows]

    async def delete_job(self, job_id: str) -> bool:
        async with self.pool.connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE job_id = %s").format(TABLE_CLUSTER_JOB_LOGS),
                    (job_id,),
                )
                result = await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE job_id = %s").format(TABLE_CLUSTER_JOBS),
                    (job_id,),
                )
                deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted cluster job {job_id}")
        return deleted

    # =========================================================================
    # LOGS
    # =========================================================================

    async def create_log(
        self,
        job_id: str,
        entry: HistoryEntry,
        array_size: Optional[int] = None,
    ) -> ClusterJobLog:
        progress = 0 if array_size is not None else None
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    job_id, array_index, history,
                    progress_started, progress_ended, progress_canceled, progress_failed
                ) VALUES (
                    %(job_id)s, 0, %(history)s,
                    %(progress)s, %(progress)s, %(progress)s, %(progress)s
                )
                ON CONFLICT (job_id, array_index) DO NOTHING
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {"job_id": job_id, "history": _entries(entry), "progress": progress},
            )
        return ClusterJobLog(
            job_id=job_id,
            history=[entry],
            array_progress=ArrayProgress() if array_size is not None else None,
        )

    async def get_log(self, job_id: str, array_index: Optional[int] = None) -> Optional[ClusterJobLog]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE job_id = %s AND array_index = %s").format(
                    TABLE_CLUSTER_JOB_LOGS
                ),
                (job_id, _index(array_index)),
            )
            row = await result.fetchone()
            return self._row_to_log(row) if row is not None else None

    async def get_element_logs(self, job_id: str) -> List[ClusterJobLog]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE job_id = %s AND array_index > 0
                ORDER BY array_index
                """).format(TABLE_CLUSTER_JOB_LOGS),
                (job_id,),
            )
            rows = await result.fetchall()
            return [self._row_to_log(row) for row in rows]

    async def push_history(self, job_id: str, array_index: Optional[int], entry: HistoryEntry) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} AS logs (job_id, array_index, history)
                VALUES (%(job_id)s, %(array_index)s, %(entries)s)
                ON CONFLICT (job_id, array_index)
                DO UPDATE SET history = logs.history || EXCLUDED.history
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {"job_id": job_id, "array_index": _index(array_index), "entries": _entries(entry)},
            )

    async def append_terminal(self, job_id: str, array_index: Optional[int], entry: HistoryEntry) -> bool:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} AS logs (job_id, array_index, history)
                VALUES (%(job_id)s, %(array_index)s, %(entries)s)
                ON CONFLICT (job_id, array_index)
                DO UPDATE SET history = logs.history || EXCLUDED.history
                WHERE COALESCE(logs.history -> -1 ->> 'status', '') <> ALL(%(terminal)s)
                RETURNING logs.job_id
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {
                    "job_id": job_id,
                    "array_index": _index(array_index),
                    "entries": _entries(entry),
                    "terminal": list(_TERMINAL_STATUSES),
                },
            )
            appended = await result.fetchone() is not None
        if not appended:
            logger.debug(f"Log {job_id}[{array_index}] already terminal, skipped {entry.status.value}")
        return appended

    async def push_failure(self, job_id: str, array_index: Optional[int], failure: FailureEntry) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} AS logs (job_id, array_index, failures)
                VALUES (%(job_id)s, %(array_index)s, %(failures)s)
                ON CONFLICT (job_id, array_index)
                DO UPDATE SET failures = logs.failures || EXCLUDED.failures
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {"job_id": job_id, "array_index": _index(array_index), "failures": _entries(failure)},
            )

    async def record_launch(self, job_id: str, entry: HistoryEntry, launch_result: LaunchResult) -> bool:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            # SET expressions see the old row, RETURNING sees the new one
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    history = CASE
                        WHEN COALESCE(history -> -1 ->> 'status', '') = ANY(%(terminal)s) THEN history
                        ELSE history || %(entries)s
                    END,
                    launch_result = %(launch_result)s
                WHERE job_id = %(job_id)s AND array_index = 0
                RETURNING (history -> -1 ->> 'status') = %(status)s AS appended
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {
                    "job_id": job_id,
                    "entries": _entries(entry),
                    "launch_result": Json(launch_result.model_dump(mode="json")),
                    "terminal": list(_TERMINAL_STATUSES),
                    "status": entry.status.value,
                },
            )
            row = await result.fetchone()
        appended = bool(row and row["appended"])
        if not appended:
            logger.debug(f"Log {job_id} already terminal, skipped {entry.status.value}")
        return appended

    async def set_launch_result(self, job_id: str, launch_result: LaunchResult) -> None:
        await self._update_parent(job_id, "launch_result", Json(launch_result.model_dump(mode="json")))

    async def set_submit_failure(self, job_id: str, reason: str) -> None:
        await self._update_parent(job_id, "submit_failure", reason)

    async def set_result(self, job_id: str, array_index: Optional[int], result: JobResult) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} AS logs (job_id, array_index, result)
                VALUES (%(job_id)s, %(array_index)s, %(result)s)
                ON CONFLICT (job_id, array_index)
                DO UPDATE SET result = EXCLUDED.result
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {
                    "job_id": job_id,
                    "array_index": _index(array_index),
                    "result": Json(result.model_dump(mode="json")),
                },
            )

    async def increment_progress(
        self,
        job_id: str,
        started: int = 0,
        ended: int = 0,
        canceled: int = 0,
        failed: int = 0,
    ) -> ArrayProgress:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    progress_started = COALESCE(progress_started, 0) + %(started)s,
                    progress_ended = COALESCE(progress_ended, 0) + %(ended)s,
                    progress_canceled = COALESCE(progress_canceled, 0) + %(canceled)s,
                    progress_failed = COALESCE(progress_failed, 0) + %(failed)s
                WHERE job_id = %(job_id)s AND array_index = 0
                RETURNING progress_started, progress_ended, progress_canceled, progress_failed
                """).format(TABLE_CLUSTER_JOB_LOGS),
                {
                    "job_id": job_id,
                    "started": started,
                    "ended": ended,
                    "canceled": canceled,
                    "failed": failed,
                },
            )
            row = await result.fetchone()

        if row is None:
            raise JobNotFoundError(job_id)
        return ArrayProgress(
            num_started=row["progress_started"],
            num_ended=row["progress_ended"],
            num_canceled=row["progress_canceled"],
            num_failed=row["progress_failed"],
        )

    # =========================================================================
    # OWNER NOTIFICATIONS
    # =========================================================================

    async def claim_owner_notification(self, owner_id: str, round_key: str) -> bool:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (owner_id, round_key) VALUES (%s, %s)
                ON CONFLICT (owner_id, round_key) DO NOTHING
                RETURNING owner_id
                """).format(TABLE_OWNER_NOTIFICATIONS),
                (owner_id, round_key),
            )
            return await result.fetchone() is not None

    async def clear_owner_notifications(self, owner_id: str) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("DELETE FROM {} WHERE owner_id = %s").format(TABLE_OWNER_NOTIFICATIONS),
                (owner_id,),
            )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _update_parent(self, job_id: str, column: str, value: Any) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("UPDATE {} SET {} = %s WHERE job_id = %s AND array_index = 0").format(
                    TABLE_CLUSTER_JOB_LOGS, sql.Identifier(column)
                ),
                (value, job_id),
            )

    def _row_to_job(self, row: Dict[str, Any]) -> ClusterJob:
        return ClusterJob.model_validate({**row["spec"], "job_id": row["job_id"]})

    def _row_to_log(self, row: Dict[str, Any]) -> ClusterJobLog:
        progress = None
        if row.get("progress_started") is not None:
            progress = ArrayProgress(
                num_started=row["progress_started"],
                num_ended=row["progress_ended"] or 0,
                num_canceled=row["progress_canceled"] or 0,
                num_failed=row["progress_failed"] or 0,
            )
        return ClusterJobLog(
            job_id=row["job_id"],
            array_index=row["array_index"] or None,
            submit_failure=row.get("submit_failure"),
            launch_result=row.get("launch_result"),
            array_progress=progress,
            history=row.get("history") or [],
            result=row.get("result"),
            failures=row.get("failures") or [],
        )


__all__ = ["PostgresClusterJobStore"]
