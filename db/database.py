"""
Durable job backend — SQLite over one long-lived aiosqlite connection.

The connection may be up or down at any moment:
    • connect()       opens it and creates the schema; failure leaves it down
    • keepalive()     background loop that probes while up, reconnects while down
    • any OperationalError during a call marks it down

Callers check `Database.connected` on every call (see db/store.py); when it is
down the in-memory backend takes over.
"""

import asyncio
import logging
import os
import sqlite3
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Optional

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from models.errors import NotFoundError, PersistenceError
from models.job import (
    PREDECESSORS,
    Job,
    check_fields,
    check_transition,
    new_job_id,
    utc_now,
)
from models.verdict import Verdict

logger = logging.getLogger(__name__)

DB_PATH: str = os.getenv("DB_PATH", "ux_audit.db")
KEEPALIVE_INTERVAL: float = float(os.getenv("DB_KEEPALIVE_INTERVAL", "5"))

_CREATE_AUDITS = """
CREATE TABLE IF NOT EXISTS audits (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id     TEXT    NOT NULL UNIQUE,
    url        TEXT    NOT NULL,
    status     TEXT    NOT NULL DEFAULT 'pending',
    score      INTEGER,
    result     TEXT,
    error      TEXT,
    created_at TEXT    NOT NULL,
    updated_at TEXT
)
"""

_CREATE_AUDITS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_audits_created_at ON audits (created_at)"
)


# ── Connection ────────────────────────────────────────────────────────────────

class Database:
    def __init__(self, path: str = DB_PATH) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Durable store is not connected")
        return self._conn

    async def connect(self) -> bool:
        if self._conn is not None:
            return True

        conn: aiosqlite.Connection | None = None
        try:
            # autocommit: concurrent audit tasks share this connection
            conn = await aiosqlite.connect(self.path, isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await conn.execute(_CREATE_AUDITS)
            await conn.execute(_CREATE_AUDITS_INDEX)
        except (sqlite3.Error, OSError) as exc:
            logger.warning(
                "Durable store unavailable",
                extra={"db_path": self.path, "error": str(exc)},
            )
            if conn is not None:
                with suppress(sqlite3.Error):
                    await conn.close()
            return False

        self._conn = conn
        logger.info("Durable store connected", extra={"db_path": self.path})
        return True

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()

    async def mark_down(self, exc: BaseException) -> None:
        if self._conn is None:
            return
        logger.error(
            "Durable store connection lost",
            extra={"db_path": self.path, "error": str(exc)},
        )
        conn, self._conn = self._conn, None
        with suppress(sqlite3.Error, ValueError):
            await conn.close()

    async def ping(self) -> bool:
        if self._conn is None:
            return False
        try:
            async with self._conn.execute("SELECT 1") as cur:
                await cur.fetchone()
            return True
        except sqlite3.Error as exc:
            await self.mark_down(exc)
            return False

    async def keepalive(self, interval: float = KEEPALIVE_INTERVAL) -> None:
        logger.info("Durable store keepalive started", extra={"interval": interval})
        while True:
            try:
                if self.connected:
                    await self.ping()
                else:
                    await self.connect()
            except Exception as exc:
                logger.error("keepalive error", extra={"error": str(exc)}, exc_info=True)

            await asyncio.sleep(interval)


# ── Audits ────────────────────────────────────────────────────────────────────

def _row_to_job(row: aiosqlite.Row) -> Job:
    result = None
    if row["result"]:
        try:
            result = Verdict.model_validate_json(row["result"])
        except PydanticValidationError as exc:
            raise PersistenceError(
                f"Stored result for audit {row['job_id']} is unreadable"
            ) from exc
    return Job(
        id=row["job_id"],
        url=row["url"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        score=row["score"],
        result=result,
        error=row["error"],
    )


class SqliteJobStore:
    def __init__(self, database: Database) -> None:
        self.database = database

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self.database.connection
        try:
            yield conn
        except sqlite3.Error as exc:
            # constraint errors leave the connection usable
            if isinstance(exc, sqlite3.OperationalError):
                await self.database.mark_down(exc)
            raise PersistenceError(f"Durable store error: {exc}") from exc

    async def create(self, url: str) -> Job:
        job = Job(id=new_job_id(), url=url)
        async with self._connection() as db:
            await db.execute(
                """
                INSERT INTO audits (job_id, url, status, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (job.id, job.url, job.status, job.created_at),
            )
        return job

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._connection() as db:
            async with db.execute(
                "SELECT * FROM audits WHERE job_id = ?", (job_id,)
            ) as cur:
                row = await cur.fetchone()
        return _row_to_job(row) if row else None

    async def update_status(
        self,
        job_id: str,
        status: str,
        result: Optional[Verdict] = None,
        score: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job:
        check_fields(status, result, score, error)
        predecessors = PREDECESSORS.get(status, ())
        payload = result.model_dump_json() if result is not None else None

        updated = 0
        async with self._connection() as db:
            if predecessors:
                marks = ", ".join("?" for _ in predecessors)
                cur = await db.execute(
                    f"""
                    UPDATE audits
                    SET status = ?, score = ?, result = ?, error = ?,
                        updated_at = ?
                    WHERE job_id = ? AND status IN ({marks})
                    """,
                    (status, score, payload, error, utc_now(), job_id, *predecessors),
                )
                updated = cur.rowcount
                await cur.close()

        if not updated:
            current = await self.get(job_id)
            if current is None:
                raise NotFoundError(f"Audit {job_id} not found")
            check_transition(job_id, current.status, status)

        job = await self.get(job_id)
        if job is None:
            raise NotFoundError(f"Audit {job_id} not found")
        return job

    async def list_recent(self, n: int) -> list[Job]:
        async with self._connection() as db:
            async with db.execute(
                "SELECT * FROM audits ORDER BY created_at DESC, seq DESC LIMIT ?",
                (max(n, 0),),
            ) as cur:
                rows = await cur.fetchall()
        return [_row_to_job(r) for r in rows]
