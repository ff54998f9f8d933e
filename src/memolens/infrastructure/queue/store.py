"""Durable job store with a PostgreSQL backend and a SQLite backend.

PostgreSQL claims jobs with ``FOR UPDATE SKIP LOCKED`` so any number of
worker processes can share one table. The SQLite backend serialises claims
with ``BEGIN IMMEDIATE`` and serves tests and single-host deployments.

All methods are blocking; async callers run them through
``asyncio.to_thread``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ...domain.models import AnalysisJob, JobState
from ...exceptions import QueueUnavailableError

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (JobState.WAITING.value, JobState.ACTIVE.value)


@dataclass(slots=True)
class JobStoreConfig:
    """Configuration required to talk to the queue database."""

    dsn: str
    statement_timeout_ms: int = 5_000


class JobStore:
    """Facade choosing the backend from the DSN scheme."""

    def __init__(self, *, config: JobStoreConfig) -> None:
        self.config = config
        if self._is_sqlite_dsn(config.dsn):
            self._backend: _StoreBackend = _SQLiteStoreBackend(config)
        else:
            self._backend = _PostgresStoreBackend(config)

    # Public API ---------------------------------------------------------

    def enqueue(self, job: AnalysisJob) -> AnalysisJob:
        """Persist ``job`` or return the live job sharing its dedup key."""

        return self._backend.enqueue(job)

    def acquire_for_processing(
        self,
        *,
        queue_name: str,
        job_types: Sequence[str],
        now: datetime,
    ) -> AnalysisJob | None:
        return self._backend.acquire_for_processing(
            queue_name=queue_name, job_types=tuple(job_types), now=now
        )

    def mark_completed(self, job_id: str, *, result: Any, now: datetime) -> AnalysisJob:
        return self._backend.mark_completed(job_id, result=result, now=now)

    def mark_retry(
        self,
        job_id: str,
        *,
        error: str,
        available_at: datetime,
        now: datetime,
    ) -> AnalysisJob:
        return self._backend.mark_retry(job_id, error=error, available_at=available_at, now=now)

    def mark_failed(self, job_id: str, *, error: str, now: datetime) -> AnalysisJob:
        return self._backend.mark_failed(job_id, error=error, now=now)

    def get(self, job_id: str) -> AnalysisJob | None:
        return self._backend.get(job_id)

    def counts(self, queue_name: str) -> dict[str, int]:
        """Return the number of jobs per state for ``queue_name``."""

        return self._backend.counts(queue_name)

    def list_failed(self, queue_name: str, *, limit: int = 50) -> list[AnalysisJob]:
        return self._backend.list_failed(queue_name, limit=max(1, limit))

    def recover_stalled(self, *, stalled_before: datetime, now: datetime) -> list[AnalysisJob]:
        """Requeue (or fail) jobs that stayed ``active`` since ``stalled_before``."""

        return self._backend.recover_stalled(stalled_before=stalled_before, now=now)

    def close(self) -> None:
        self._backend.close()

    # Helpers ------------------------------------------------------------

    @staticmethod
    def _is_sqlite_dsn(dsn: str) -> bool:
        return dsn == ":memory:" or dsn.startswith("sqlite://") or dsn.startswith("file:")


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _empty_counts() -> dict[str, int]:
    return {state.value: 0 for state in JobState}


class _StoreBackend:
    """Backend protocol implemented by concrete database adapters."""

    def __init__(self) -> None:
        # One connection per backend; worker threads take turns on it.
        self._lock = threading.Lock()

    def enqueue(self, job: AnalysisJob) -> AnalysisJob:
        raise NotImplementedError

    def acquire_for_processing(
        self, *, queue_name: str, job_types: tuple[str, ...], now: datetime
    ) -> AnalysisJob | None:
        raise NotImplementedError

    def mark_completed(self, job_id: str, *, result: Any, now: datetime) -> AnalysisJob:
        raise NotImplementedError

    def mark_retry(
        self, job_id: str, *, error: str, available_at: datetime, now: datetime
    ) -> AnalysisJob:
        raise NotImplementedError

    def mark_failed(self, job_id: str, *, error: str, now: datetime) -> AnalysisJob:
        raise NotImplementedError

    def get(self, job_id: str) -> AnalysisJob | None:
        raise NotImplementedError

    def counts(self, queue_name: str) -> dict[str, int]:
        raise NotImplementedError

    def list_failed(self, queue_name: str, *, limit: int) -> list[AnalysisJob]:
        raise NotImplementedError

    def recover_stalled(self, *, stalled_before: datetime, now: datetime) -> list[AnalysisJob]:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class _SQLiteStoreBackend(_StoreBackend):
    """SQLite implementation used in unit tests and single-host deployments."""

    def __init__(self, config: JobStoreConfig) -> None:
        super().__init__()
        self.config = config
        self._conn = self._connect(config.dsn)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # Queue operations ---------------------------------------------------

    def enqueue(self, job: AnalysisJob) -> AnalysisJob:
        try:
            with self._transaction():
                if job.dedup_key is not None:
                    existing = self._conn.execute(
                        """
                        SELECT *
                        FROM analysis_jobs
                        WHERE queue_name = :queue_name
                          AND job_type = :job_type
                          AND dedup_key = :dedup_key
                          AND state IN (:waiting, :active)
                        ORDER BY seq
                        LIMIT 1
                        """,
                        {
                            "queue_name": job.queue_name,
                            "job_type": job.job_type,
                            "dedup_key": job.dedup_key,
                            "waiting": JobState.WAITING.value,
                            "active": JobState.ACTIVE.value,
                        },
                    ).fetchone()
                    if existing is not None:
                        return self._deserialize_job(existing)
                self._conn.execute(
                    """
                    INSERT INTO analysis_jobs (
                        id,
                        queue_name,
                        job_type,
                        payload,
                        priority,
                        attempts_made,
                        max_attempts,
                        state,
                        dedup_key,
                        last_error,
                        result,
                        enqueued_at,
                        updated_at,
                        available_at,
                        started_at,
                        finished_at
                    ) VALUES (
                        :id,
                        :queue_name,
                        :job_type,
                        :payload,
                        :priority,
                        :attempts_made,
                        :max_attempts,
                        :state,
                        :dedup_key,
                        :last_error,
                        :result,
                        :enqueued_at,
                        :updated_at,
                        :available_at,
                        :started_at,
                        :finished_at
                    )
                    """,
                    self._serialize_job(job),
                )
                return self._get_job(job.id)
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to enqueue job") from exc

    def acquire_for_processing(
        self, *, queue_name: str, job_types: tuple[str, ...], now: datetime
    ) -> AnalysisJob | None:
        if not job_types:
            return None
        placeholders = ", ".join(f":type_{index}" for index in range(len(job_types)))
        params: dict[str, object] = {
            "queue_name": queue_name,
            "waiting": JobState.WAITING.value,
            "now": self._serialize_datetime(now),
        }
        params.update({f"type_{index}": value for index, value in enumerate(job_types)})
        try:
            with self._transaction():
                row = self._conn.execute(
                    f"""
                    SELECT id
                    FROM analysis_jobs
                    WHERE queue_name = :queue_name
                      AND state = :waiting
                      AND available_at <= :now
                      AND job_type IN ({placeholders})
                    ORDER BY priority, enqueued_at, seq
                    LIMIT 1
                    """,
                    params,
                ).fetchone()
                if row is None:
                    return None
                self._conn.execute(
                    """
                    UPDATE analysis_jobs
                    SET state = :active,
                        attempts_made = attempts_made + 1,
                        started_at = :now,
                        updated_at = :now
                    WHERE id = :id
                    """,
                    {
                        "active": JobState.ACTIVE.value,
                        "now": self._serialize_datetime(now),
                        "id": row["id"],
                    },
                )
                return self._get_job(row["id"])
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to acquire job") from exc

    def mark_completed(self, job_id: str, *, result: Any, now: datetime) -> AnalysisJob:
        try:
            with self._transaction():
                self._conn.execute(
                    """
                    UPDATE analysis_jobs
                    SET state = :completed,
                        result = :result,
                        last_error = NULL,
                        updated_at = :now,
                        finished_at = :now
                    WHERE id = :id
                      AND state IN (:waiting, :active)
                    """,
                    {
                        "completed": JobState.COMPLETED.value,
                        "result": json.dumps(result),
                        "now": self._serialize_datetime(now),
                        "id": job_id,
                        "waiting": JobState.WAITING.value,
                        "active": JobState.ACTIVE.value,
                    },
                )
                return self._get_job(job_id)
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to complete job") from exc

    def mark_retry(
        self, job_id: str, *, error: str, available_at: datetime, now: datetime
    ) -> AnalysisJob:
        try:
            with self._transaction():
                self._conn.execute(
                    """
                    UPDATE analysis_jobs
                    SET state = :waiting,
                        last_error = :error,
                        available_at = :available_at,
                        updated_at = :now,
                        started_at = NULL
                    WHERE id = :id
                      AND state = :active
                    """,
                    {
                        "waiting": JobState.WAITING.value,
                        "error": error,
                        "available_at": self._serialize_datetime(available_at),
                        "now": self._serialize_datetime(now),
                        "id": job_id,
                        "active": JobState.ACTIVE.value,
                    },
                )
                return self._get_job(job_id)
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to reschedule job") from exc

    def mark_failed(self, job_id: str, *, error: str, now: datetime) -> AnalysisJob:
        try:
            with self._transaction():
                self._conn.execute(
                    """
                    UPDATE analysis_jobs
                    SET state = :failed,
                        last_error = :error,
                        updated_at = :now,
                        finished_at = :now
                    WHERE id = :id
                      AND state = :active
                    """,
                    {
                        "failed": JobState.FAILED.value,
                        "error": error,
                        "now": self._serialize_datetime(now),
                        "id": job_id,
                        "active": JobState.ACTIVE.value,
                    },
                )
                return self._get_job(job_id)
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to fail job") from exc

    def get(self, job_id: str) -> AnalysisJob | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM analysis_jobs WHERE id = :id",
                    {"id": job_id},
                ).fetchone()
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to load job") from exc
        return self._deserialize_job(row) if row is not None else None

    def counts(self, queue_name: str) -> dict[str, int]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT state, COUNT(*) AS cnt
                    FROM analysis_jobs
                    WHERE queue_name = :queue_name
                    GROUP BY state
                    """,
                    {"queue_name": queue_name},
                ).fetchall()
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to count jobs") from exc
        counts = _empty_counts()
        for row in rows:
            counts[row["state"]] = int(row["cnt"])
        return counts

    def list_failed(self, queue_name: str, *, limit: int) -> list[AnalysisJob]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT *
                    FROM analysis_jobs
                    WHERE queue_name = :queue_name
                      AND state = :failed
                    ORDER BY finished_at DESC, seq DESC
                    LIMIT :limit
                    """,
                    {"queue_name": queue_name, "failed": JobState.FAILED.value, "limit": limit},
                ).fetchall()
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to list failed jobs") from exc
        return [self._deserialize_job(row) for row in rows]

    def recover_stalled(self, *, stalled_before: datetime, now: datetime) -> list[AnalysisJob]:
        try:
            with self._transaction():
                rows = self._conn.execute(
                    """
                    SELECT id, attempts_made, max_attempts
                    FROM analysis_jobs
                    WHERE state = :active
                      AND started_at < :stalled_before
                    """,
                    {
                        "active": JobState.ACTIVE.value,
                        "stalled_before": self._serialize_datetime(stalled_before),
                    },
                ).fetchall()
                recovered: list[AnalysisJob] = []
                for row in rows:
                    exhausted = row["attempts_made"] >= row["max_attempts"]
                    self._conn.execute(
                        """
                        UPDATE analysis_jobs
                        SET state = :state,
                            last_error = :error,
                            available_at = :now,
                            updated_at = :now,
                            started_at = NULL,
                            finished_at = :finished_at
                        WHERE id = :id
                        """,
                        {
                            "state": JobState.FAILED.value if exhausted else JobState.WAITING.value,
                            "error": "stalled: worker stopped before acknowledging",
                            "now": self._serialize_datetime(now),
                            "finished_at": self._serialize_datetime(now) if exhausted else None,
                            "id": row["id"],
                        },
                    )
                    recovered.append(self._get_job(row["id"]))
                return recovered
        except sqlite3.DatabaseError as exc:
            raise QueueUnavailableError("failed to recover stalled jobs") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Internal utilities -------------------------------------------------

    def _connect(self, dsn: str) -> sqlite3.Connection:
        if dsn.startswith("sqlite://"):
            path = dsn.replace("sqlite:///", "", 1).replace("sqlite://", "", 1) or ":memory:"
        else:
            path = dsn
        return sqlite3.connect(
            path,
            check_same_thread=False,
            isolation_level=None,
            uri=path.startswith("file:"),
        )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def _ensure_schema(self) -> None:
        with self._transaction():
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analysis_jobs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    queue_name TEXT NOT NULL,
                    job_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    attempts_made INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    dedup_key TEXT,
                    last_error TEXT,
                    result TEXT,
                    enqueued_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    available_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT
                )
                """,
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_analysis_jobs_claim
                    ON analysis_jobs(queue_name, state, priority, enqueued_at)
                """,
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_analysis_jobs_dedup
                    ON analysis_jobs(queue_name, job_type, dedup_key)
                """,
            )

    def _get_job(self, job_id: str) -> AnalysisJob:
        row = self._conn.execute(
            "SELECT * FROM analysis_jobs WHERE id = :id",
            {"id": job_id},
        ).fetchone()
        if row is None:
            raise QueueUnavailableError(f"job {job_id} not found")
        return self._deserialize_job(row)

    @staticmethod
    def _serialize_datetime(value: datetime) -> str:
        return _utc(value).isoformat(timespec="microseconds")

    def _serialize_job(self, job: AnalysisJob) -> dict[str, object]:
        def _optional(value: datetime | None) -> str | None:
            return self._serialize_datetime(value) if value is not None else None

        return {
            "id": job.id,
            "queue_name": job.queue_name,
            "job_type": job.job_type,
            "payload": json.dumps(job.payload),
            "priority": job.priority,
            "attempts_made": job.attempts_made,
            "max_attempts": job.max_attempts,
            "state": job.state.value,
            "dedup_key": job.dedup_key,
            "last_error": job.last_error,
            "result": json.dumps(job.result) if job.result is not None else None,
            "enqueued_at": self._serialize_datetime(job.enqueued_at),
            "updated_at": self._serialize_datetime(job.updated_at),
            "available_at": self._serialize_datetime(job.available_at),
            "started_at": _optional(job.started_at),
            "finished_at": _optional(job.finished_at),
        }

    def _deserialize_job(self, row: sqlite3.Row) -> AnalysisJob:
        def _parse(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value is not None else None

        return AnalysisJob(
            id=row["id"],
            queue_name=row["queue_name"],
            job_type=row["job_type"],
            payload=json.loads(row["payload"]),
            priority=int(row["priority"]),
            attempts_made=int(row["attempts_made"]),
            max_attempts=int(row["max_attempts"]),
            state=JobState(row["state"]),
            dedup_key=row["dedup_key"],
            last_error=row["last_error"],
            result=json.loads(row["result"]) if row["result"] is not None else None,
            enqueued_at=datetime.fromisoformat(row["enqueued_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            available_at=datetime.fromisoformat(row["available_at"]),
            started_at=_parse(row["started_at"]),
            finished_at=_parse(row["finished_at"]),
        )


class _PostgresStoreBackend(_StoreBackend):
    """PostgreSQL implementation relying on psycopg for real deployments."""

    def __init__(self, config: JobStoreConfig) -> None:
        super().__init__()
        self.config = config
        try:
            self._conn = psycopg.connect(config.dsn, autocommit=False, row_factory=dict_row)
        except psycopg.Error as exc:
            raise QueueUnavailableError("cannot connect to the queue database") from exc
        self._set_statement_timeout()
        self._ensure_schema()

    # Queue operations ---------------------------------------------------

    def enqueue(self, job: AnalysisJob) -> AnalysisJob:
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO analysis_jobs (
                        id,
                        queue_name,
                        job_type,
                        payload,
                        priority,
                        attempts_made,
                        max_attempts,
                        state,
                        dedup_key,
                        last_error,
                        result,
                        enqueued_at,
                        updated_at,
                        available_at,
                        started_at,
                        finished_at
                    ) VALUES (
                        %(id)s,
                        %(queue_name)s,
                        %(job_type)s,
                        %(payload)s,
                        %(priority)s,
                        %(attempts_made)s,
                        %(max_attempts)s,
                        %(state)s,
                        %(dedup_key)s,
                        %(last_error)s,
                        %(result)s,
                        %(enqueued_at)s,
                        %(updated_at)s,
                        %(available_at)s,
                        %(started_at)s,
                        %(finished_at)s
                    )
                    ON CONFLICT (queue_name, job_type, dedup_key)
                        WHERE dedup_key IS NOT NULL AND state IN ('waiting', 'active')
                    DO NOTHING
                    RETURNING *
                    """,
                    self._serialize_job(job),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute(
                        """
                        SELECT *
                        FROM analysis_jobs
                        WHERE queue_name = %(queue_name)s
                          AND job_type = %(job_type)s
                          AND dedup_key = %(dedup_key)s
                          AND state = ANY(%(states)s)
                        ORDER BY seq
                        LIMIT 1
                        """,
                        {
                            "queue_name": job.queue_name,
                            "job_type": job.job_type,
                            "dedup_key": job.dedup_key,
                            "states": list(_ACTIVE_STATES),
                        },
                    )
                    row = cur.fetchone()
                if row is None:
                    raise QueueUnavailableError(f"job {job.id} vanished during enqueue")
                return self._deserialize_job(row)
        except psycopg.Error as exc:
            raise QueueUnavailableError("failed to enqueue job") from exc

    def acquire_for_processing(
        self, *, queue_name: str, job_types: tuple[str, ...], now: datetime
    ) -> AnalysisJob | None:
        if not job_types:
            return None
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    UPDATE analysis_jobs
                    SET state = %(active)s,
                        attempts_made = attempts_made + 1,
                        started_at = %(now)s,
                        updated_at = %(now)s
                    WHERE id = (
                        SELECT id
                        FROM analysis_jobs
                        WHERE queue_name = %(queue_name)s
                          AND state = %(waiting)s
                          AND available_at <= %(now)s
                          AND job_type = ANY(%(job_types)s)
                        ORDER BY priority, enqueued_at, seq
                        FOR UPDATE SKIP LOCKED
                        LIMIT 1
                    )
                    RETURNING *
                    """,
                    {
                        "active": JobState.ACTIVE.value,
                        "waiting": JobState.WAITING.value,
                        "now": _utc(now),
                        "queue_name": queue_name,
                        "job_types": list(job_types),
                    },
                )
                row = cur.fetchone()
                return self._deserialize_job(row) if row is not None else None
        except psycopg.Error as exc:
            raise QueueUnavailableError("failed to acquire job") from exc

    def mark_completed(self, job_id: str, *, result: Any, now: datetime) -> AnalysisJob:
        return self._update_and_fetch(
            """
            UPDATE analysis_jobs
            SET state = %(completed)s,
                result = %(result)s,
                last_error = NULL,
                updated_at = %(now)s,
                finished_at = %(now)s
            WHERE id = %(id)s
              AND state = ANY(%(states)s)
            """,
            {
                "completed": JobState.COMPLETED.value,
                "result": Jsonb(result),
                "now": _utc(now),
                "id": job_id,
                "states": list(_ACTIVE_STATES),
            },
            job_id=job_id,
            action="complete",
        )

    def mark_retry(
        self, job_id: str, *, error: str, available_at: datetime, now: datetime
    ) -> AnalysisJob:
        return self._update_and_fetch(
            """
            UPDATE analysis_jobs
            SET state = %(waiting)s,
                last_error = %(error)s,
                available_at = %(available_at)s,
                updated_at = %(now)s,
                started_at = NULL
            WHERE id = %(id)s
              AND state = %(active)s
            """,
            {
                "waiting": JobState.WAITING.value,
                "active": JobState.ACTIVE.value,
                "error": error,
                "available_at": _utc(available_at),
                "now": _utc(now),
                "id": job_id,
            },
            job_id=job_id,
            action="reschedule",
        )

    def mark_failed(self, job_id: str, *, error: str, now: datetime) -> AnalysisJob:
        return self._update_and_fetch(
            """
            UPDATE analysis_jobs
            SET state = %(failed)s,
                last_error = %(error)s,
                updated_at = %(now)s,
                finished_at = %(now)s
            WHERE id = %(id)s
              AND state = %(active)s
            """,
            {
                "failed": JobState.FAILED.value,
                "active": JobState.ACTIVE.value,
                "error": error,
                "now": _utc(now),
                "id": job_id,
            },
            job_id=job_id,
            action="fail",
        )

    def get(self, job_id: str) -> AnalysisJob | None:
        try:
            with self._transaction() as cur:
                cur.execute("SELECT * FROM analysis_jobs WHERE id = %(id)s", {"id": job_id})
                row = cur.fetchone()
        except psycopg.Error as exc:
            raise QueueUnavailableError("failed to load job") from exc
        return self._deserialize_job(row) if row is not None else None

    def counts(self, queue_name: str) -> dict[str, int]:
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    SELECT state, COUNT(*) AS cnt
                    FROM analysis_jobs
                    WHERE queue_name = %(queue_name)s
                    GROUP BY state
                    """,
                    {"queue_name": queue_name},
                )
                rows = cur.fetchall() or []
        except psycopg.Error as exc:
            raise QueueUnavailableError("failed to count jobs") from exc
        counts = _empty_counts()
        for row in rows:
            counts[row["state"]] = int(row["cnt"])
        return counts

    def list_failed(self, queue_name: str, *, limit: int) -> list[AnalysisJob]:
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    SELECT *
                    FROM analysis_jobs
                    WHERE queue_name = %(queue_name)s
                      AND state = %(failed)s
                    ORDER BY finished_at DESC, seq DESC
                    LIMIT %(limit)s
                    """,
                    {"queue_name": queue_name, "failed": JobState.FAILED.value, "limit": limit},
                )
                rows = cur.fetchall() or []
        except psycopg.Error as exc:
            raise QueueUnavailableError("failed to list failed jobs") from exc
        return [self._deserialize_job(row) for row in rows]

    def recover_stalled(self, *, stalled_before: datetime, now: datetime) -> list[AnalysisJob]:
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    UPDATE analysis_jobs
                    SET state = CASE
                            WHEN attempts_made >= max_attempts THEN %(failed)s
                            ELSE %(waiting)s
                        END,
                        finished_at = CASE
                            WHEN attempts_made >= max_attempts THEN %(now)s
                            ELSE NULL
                        END,
                        last_error = %(error)s,
                        available_at = %(now)s,
                        updated_at = %(now)s,
                        started_at = NULL
                    WHERE id IN (
                        SELECT id
                        FROM analysis_jobs
                        WHERE state = %(active)s
                          AND started_at < %(stalled_before)s
                        FOR UPDATE SKIP LOCKED
                    )
                    RETURNING *
                    """,
                    {
                        "failed": JobState.FAILED.value,
                        "waiting": JobState.WAITING.value,
                        "active": JobState.ACTIVE.value,
                        "error": "stalled: worker stopped before acknowledging",
                        "now": _utc(now),
                        "stalled_before": _utc(stalled_before),
                    },
                )
                rows = cur.fetchall() or []
        except psycopg.Error as exc:
            raise QueueUnavailableError("failed to recover stalled jobs") from exc
        return [self._deserialize_job(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Internal utilities -------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[psycopg.Cursor]:
        with self._lock:
            with self._conn.cursor() as cur:
                try:
                    yield cur
                except Exception:
                    self._conn.rollback()
                    raise
                else:
                    self._conn.commit()

    def _update_and_fetch(
        self, statement: str, params: dict[str, object], *, job_id: str, action: str
    ) -> AnalysisJob:
        try:
            with self._transaction() as cur:
                cur.execute(statement, params)
                cur.execute("SELECT * FROM analysis_jobs WHERE id = %(id)s", {"id": job_id})
                row = cur.fetchone()
        except psycopg.Error as exc:
            raise QueueUnavailableError(f"failed to {action} job") from exc
        if row is None:
            raise QueueUnavailableError(f"job {job_id} not found")
        return self._deserialize_job(row)

    def _set_statement_timeout(self) -> None:
        with self._conn.cursor() as cur:
            cur.execute(f"SET statement_timeout = {int(self.config.statement_timeout_ms)}")
        self._conn.commit()

    def _ensure_schema(self) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS analysis_jobs (
                    seq BIGSERIAL PRIMARY KEY,
                    id TEXT NOT NULL UNIQUE,
                    queue_name TEXT NOT NULL,
                    job_type TEXT NOT NULL,
                    payload JSONB NOT NULL,
                    priority INTEGER NOT NULL,
                    attempts_made INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    dedup_key TEXT,
                    last_error TEXT,
                    result JSONB,
                    enqueued_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    available_at TIMESTAMPTZ NOT NULL,
                    started_at TIMESTAMPTZ,
                    finished_at TIMESTAMPTZ
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_analysis_jobs_claim
                    ON analysis_jobs(queue_name, state, priority, enqueued_at)
                """
            )
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_analysis_jobs_live_dedup
                    ON analysis_jobs(queue_name, job_type, dedup_key)
                    WHERE dedup_key IS NOT NULL AND state IN ('waiting', 'active')
                """
            )
        self._conn.commit()

    @staticmethod
    def _serialize_job(job: AnalysisJob) -> dict[str, object]:
        return {
            "id": job.id,
            "queue_name": job.queue_name,
            "job_type": job.job_type,
            "payload": Jsonb(job.payload),
            "priority": job.priority,
            "attempts_made": job.attempts_made,
            "max_attempts": job.max_attempts,
            "state": job.state.value,
            "dedup_key": job.dedup_key,
            "last_error": job.last_error,
            "result": Jsonb(job.result) if job.result is not None else None,
            "enqueued_at": _utc(job.enqueued_at),
            "updated_at": _utc(job.updated_at),
            "available_at": _utc(job.available_at),
            "started_at": _utc(job.started_at) if job.started_at else None,
            "finished_at": _utc(job.finished_at) if job.finished_at else None,
        }

    @staticmethod
    def _deserialize_job(row: dict[str, Any]) -> AnalysisJob:
        return AnalysisJob(
            id=str(row["id"]),
            queue_name=row["queue_name"],
            job_type=row["job_type"],
            payload=row["payload"],
            priority=int(row["priority"]),
            attempts_made=int(row["attempts_made"]),
            max_attempts=int(row["max_attempts"]),
            state=JobState(row["state"]),
            dedup_key=row["dedup_key"],
            last_error=row["last_error"],
            result=row["result"],
            enqueued_at=row["enqueued_at"],
            updated_at=row["updated_at"],
            available_at=row["available_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )


__all__ = ["JobStore", "JobStoreConfig"]
