"""
Transient in-process job backend.

Used whenever the durable SQLite connection is down. Records live only as long
as the process and are not shared between processes. The list is append-only;
individual records are mutated in place by their own audit task.
"""

from dataclasses import replace
from typing import Optional

from models.errors import NotFoundError
from models.job import Job, check_fields, check_transition, new_job_id, utc_now
from models.verdict import Verdict


class MemoryJobStore:
    def __init__(self) -> None:
        self._jobs: list[Job] = []
        self._by_id: dict[str, Job] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._by_id

    def __len__(self) -> int:
        return len(self._jobs)

    async def create(self, url: str) -> Job:
        job = Job(id=new_job_id(), url=url)
        self._jobs.append(job)
        self._by_id[job.id] = job
        return replace(job)

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._by_id.get(job_id)
        return replace(job) if job else None

    async def update_status(
        self,
        job_id: str,
        status: str,
        result: Optional[Verdict] = None,
        score: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job:
        check_fields(status, result, score, error)
        job = self._by_id.get(job_id)
        if job is None:
            raise NotFoundError(f"Audit {job_id} not found")
        check_transition(job_id, job.status, status)

        job.status = status
        job.result = result
        job.score = score
        job.error = error
        job.updated_at = utc_now()
        return replace(job)

    async def list_recent(self, n: int) -> list[Job]:
        # reversed() first so equal timestamps keep newest-inserted first
        ordered = sorted(reversed(self._jobs), key=lambda j: j.created_at, reverse=True)
        return [replace(j) for j in ordered[: max(n, 0)]]
