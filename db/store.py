"""
JobStore — routes every call to the durable or the transient backend.

Selection happens per call, never cached:
    • create / list_recent    durable while connected, else in-memory
    • get / update_status     in-memory if it holds the id (created during an
                              outage), else durable
                              (PersistenceError while it is down)
    • list_recent             merges both, newest first

Records are never migrated between backends.
"""

import logging
from typing import Optional

from db.database import Database, SqliteJobStore
from db.memory import MemoryJobStore
from models.errors import NotFoundError
from models.job import Job
from models.verdict import Verdict

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(self, database: Database, memory: MemoryJobStore | None = None) -> None:
        self.database = database
        self.durable = SqliteJobStore(database)
        self.memory = memory if memory is not None else MemoryJobStore()

    def database_status(self) -> str:
        return "connected" if self.database.connected else "disconnected"

    async def create(self, url: str) -> Job:
        if self.database.connected:
            return await self.durable.create(url)

        job = await self.memory.create(url)
        logger.warning(
            "Durable store down, audit kept in memory",
            extra={"job_id": job.id, "url": url},
        )
        return job

    async def get(self, job_id: str) -> Job:
        # durable raises PersistenceError while down
        if job_id in self.memory:
            job = await self.memory.get(job_id)
        else:
            job = await self.durable.get(job_id)

        if job is None:
            raise NotFoundError(f"Audit {job_id} not found")
        return job

    async def update_status(
        self,
        job_id: str,
        status: str,
        result: Optional[Verdict] = None,
        score: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job:
        if job_id in self.memory:
            return await self.memory.update_status(job_id, status, result, score, error)
        return await self.durable.update_status(job_id, status, result, score, error)

    async def list_recent(self, n: int) -> list[Job]:
        jobs = await self.memory.list_recent(n)
        if self.database.connected:
            jobs += await self.durable.list_recent(n)
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[: max(n, 0)]
