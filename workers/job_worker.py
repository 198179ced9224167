"""
Audit orchestrator.

- submit()        validates the URL, creates the job (pending) and schedules
                  its run; returns the id without waiting for the run.
- run()           pending → processing → completed | failed, one attempt.
- join()          waits for in-flight runs (used on shutdown).

A run never raises: whatever goes wrong after the job exists is written back
as status 'failed' with the error text. When that write fails because the
durable store is down, the run waits up to STORE_RECOVERY_WAIT seconds for a
reconnect and writes 'failed' again.

Demo mode (no evaluation credential) skips the browser entirely and completes
with the fixed demo verdict.
"""

import asyncio
import logging
import os
import time
from typing import Awaitable, Callable

from agent.capture import CAPTURE_TIMEOUT, ExtractedContent, capture
from agent.evaluator import Evaluator, demo_verdict
from agent.parser import parse_url
from db.store import JobStore
from models.errors import PersistenceError
from models.job import COMPLETED, FAILED, PROCESSING
from models.verdict import Verdict

logger = logging.getLogger(__name__)

# How long a finished run waits for the durable store to come back so its
# terminal status can be written.
STORE_RECOVERY_WAIT = float(os.getenv("STORE_RECOVERY_WAIT", "30"))
STORE_POLL_INTERVAL = 0.5

CaptureFn = Callable[[str, float], Awaitable[tuple[bytes, ExtractedContent]]]


class AuditOrchestrator:
    def __init__(
        self,
        store: JobStore,
        evaluator: Evaluator,
        capture_fn: CaptureFn = capture,
        capture_timeout: float = CAPTURE_TIMEOUT,
        store_wait: float = STORE_RECOVERY_WAIT,
        store_poll: float = STORE_POLL_INTERVAL,
    ):
        self.store = store
        self.evaluator = evaluator
        self.capture_fn = capture_fn
        self.capture_timeout = capture_timeout
        self.store_wait = store_wait
        self.store_poll = store_poll
        self._running: dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._running)

    async def submit(self, raw_url: str | None) -> str:
        url = parse_url(raw_url)
        job = await self.store.create(url)
        logger.info("Audit submitted", extra={"job_id": job.id, "url": url})
        self.schedule(job.id, url)
        return job.id

    def schedule(self, job_id: str, url: str) -> None:
        """Start a run task, guarded by _running so an id never runs twice."""
        if job_id in self._running:
            return

        async def _run() -> None:
            try:
                await self.run(job_id, url)
            finally:
                self._running.pop(job_id, None)

        self._running[job_id] = asyncio.create_task(_run(), name=f"audit-{job_id}")

    async def run(self, job_id: str, url: str) -> None:
        started = time.monotonic()
        try:
            await self.store.update_status(job_id, PROCESSING)
            logger.info("Audit processing", extra={"job_id": job_id, "url": url, "mode": self.evaluator.mode})

            verdict = await self._evaluate(url)

            await self.store.update_status(
                job_id, COMPLETED, result=verdict, score=verdict.overall_score
            )
            logger.info(
                "Audit completed",
                extra={
                    "job_id":      job_id,
                    "url":         url,
                    "score":       verdict.overall_score,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )

        except Exception as exc:
            msg = str(exc) or type(exc).__name__
            logger.error(
                "Audit failed", extra={"job_id": job_id, "url": url, "error": msg}, exc_info=True
            )
            await self._record_failure(job_id, msg)

    async def _record_failure(self, job_id: str, msg: str) -> None:
        """Write 'failed'. If the durable store is down, wait for the keepalive
        to reconnect it and write once more; only the status write repeats."""
        try:
            await self.store.update_status(job_id, FAILED, error=msg)
            return
        except PersistenceError as exc:
            logger.warning(
                "Audit store unavailable, waiting to record failure",
                extra={"job_id": job_id, "error": str(exc), "wait_s": self.store_wait},
            )
        except Exception as exc:
            logger.error(
                "Could not record audit failure",
                extra={"job_id": job_id, "error": str(exc)},
                exc_info=True,
            )
            return

        if not await self._wait_for_store():
            logger.error(
                "Audit store did not recover, audit left unfinished",
                extra={"job_id": job_id, "wait_s": self.store_wait},
            )
            return

        try:
            await self.store.update_status(job_id, FAILED, error=msg)
            logger.info("Audit failure recorded after store recovery", extra={"job_id": job_id})
        except Exception as exc:
            logger.error(
                "Could not record audit failure",
                extra={"job_id": job_id, "error": str(exc)},
                exc_info=True,
            )

    async def _wait_for_store(self) -> bool:
        deadline = time.monotonic() + self.store_wait
        while not self.store.database.connected:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.store_poll)
        return True

    async def _evaluate(self, url: str) -> Verdict:
        if not self.evaluator.configured:
            logger.info("Running in demo mode (no evaluation credential)", extra={"url": url})
            return demo_verdict()

        snapshot, content = await self.capture_fn(url, self.capture_timeout)
        return await self.evaluator.evaluate(snapshot, content)

    async def join(self, timeout: float | None = None) -> int:
        """Wait for in-flight runs. Returns how many were still running after *timeout*."""
        tasks = list(self._running.values())
        if not tasks:
            return 0
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return len(pending)
