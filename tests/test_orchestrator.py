import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.capture import ExtractedContent
from agent.evaluator import Evaluator
from db.store import JobStore
from models.errors import CaptureError, EvaluationError, PersistenceError, ValidationError
from models.job import COMPLETED, FAILED, PENDING, PROCESSING
from workers.job_worker import AuditOrchestrator

STATUS_RANK = {PENDING: 0, PROCESSING: 1, COMPLETED: 2, FAILED: 2}


def _configured_evaluator(verdict=None, error=None):
    evaluator = Evaluator(client=MagicMock())
    evaluator.evaluate = AsyncMock(return_value=verdict, side_effect=error)
    return evaluator


async def _fake_capture(url, timeout):
    return b"jpeg", ExtractedContent(title="Example")


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_returns_before_run(self, offline_store):
        orchestrator = AuditOrchestrator(offline_store, Evaluator(api_key=""))

        audit_id = await orchestrator.submit("https://example.com")
        job = await offline_store.get(audit_id)
        assert job.status in (PENDING, PROCESSING)
        assert orchestrator.in_flight == 1

        await orchestrator.join()
        assert orchestrator.in_flight == 0

    @pytest.mark.asyncio
    async def test_empty_url_creates_nothing(self, offline_store):
        orchestrator = AuditOrchestrator(offline_store, Evaluator(api_key=""))

        for bad in ("", "   ", None):
            with pytest.raises(ValidationError):
                await orchestrator.submit(bad)

        assert await offline_store.list_recent(10) == []
        assert orchestrator.in_flight == 0

    @pytest.mark.asyncio
    async def test_same_id_is_never_run_twice(self, offline_store):
        orchestrator = AuditOrchestrator(offline_store, Evaluator(api_key=""))
        audit_id = await orchestrator.submit("https://example.com")

        orchestrator.schedule(audit_id, "https://example.com")
        assert orchestrator.in_flight == 1
        await orchestrator.join()
        assert (await offline_store.get(audit_id)).status == COMPLETED


class TestRun:
    @pytest.mark.asyncio
    async def test_demo_mode_skips_capture(self, offline_store):
        capture_fn = AsyncMock()
        orchestrator = AuditOrchestrator(offline_store, Evaluator(api_key=""), capture_fn=capture_fn)

        audit_id = await orchestrator.submit("https://example.com")
        await orchestrator.join()

        job = await offline_store.get(audit_id)
        assert job.status == COMPLETED
        assert job.score == 59
        assert job.result.overall_score == job.score
        assert job.error is None
        capture_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_configured_run_completes(self, offline_store, sample_verdict):
        evaluator = _configured_evaluator(verdict=sample_verdict)
        orchestrator = AuditOrchestrator(offline_store, evaluator, capture_fn=_fake_capture, capture_timeout=12)

        audit_id = await orchestrator.submit("https://example.com")
        await orchestrator.join()

        job = await offline_store.get(audit_id)
        assert job.status == COMPLETED
        assert job.score == 72
        snapshot, content = evaluator.evaluate.await_args.args
        assert snapshot == b"jpeg"
        assert content.title == "Example"

    @pytest.mark.asyncio
    async def test_capture_error_fails_job(self, offline_store):
        capture_fn = AsyncMock(side_effect=CaptureError("Timed out after 30s", reason="timeout"))
        evaluator = _configured_evaluator()
        orchestrator = AuditOrchestrator(offline_store, evaluator, capture_fn=capture_fn)

        audit_id = await orchestrator.submit("https://slow.example")
        await orchestrator.join()

        job = await offline_store.get(audit_id)
        assert job.status == FAILED
        assert job.error == "Timed out after 30s"
        assert job.result is None and job.score is None
        evaluator.evaluate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_evaluation_error_fails_job(self, offline_store):
        evaluator = _configured_evaluator(error=EvaluationError("Evaluation response is not valid JSON"))
        orchestrator = AuditOrchestrator(offline_store, evaluator, capture_fn=_fake_capture)

        audit_id = await orchestrator.submit("https://example.com")
        await orchestrator.join()

        job = await offline_store.get(audit_id)
        assert job.status == FAILED
        assert "not valid JSON" in job.error

    @pytest.mark.asyncio
    async def test_unexpected_error_without_message(self, offline_store):
        capture_fn = AsyncMock(side_effect=RuntimeError())
        orchestrator = AuditOrchestrator(offline_store, _configured_evaluator(), capture_fn=capture_fn)

        audit_id = await orchestrator.submit("https://example.com")
        await orchestrator.join()

        job = await offline_store.get(audit_id)
        assert job.status == FAILED
        assert job.error == "RuntimeError"

    @pytest.mark.asyncio
    async def test_persistence_error_during_run_fails_job(self, offline_store):
        real_update = offline_store.update_status

        async def flaky_update(job_id, status, **fields):
            if status == COMPLETED:
                raise PersistenceError("Durable store error: disk I/O error")
            return await real_update(job_id, status, **fields)

        offline_store.update_status = flaky_update
        orchestrator = AuditOrchestrator(offline_store, Evaluator(api_key=""))

        audit_id = await orchestrator.submit("https://example.com")
        await orchestrator.join()

        job = await offline_store.get(audit_id)
        assert job.status == FAILED
        assert "disk I/O error" in job.error

    @pytest.mark.asyncio
    async def test_store_failure_never_escapes_run(self, offline_store):
        offline_store.update_status = AsyncMock(side_effect=PersistenceError("down"))
        orchestrator = AuditOrchestrator(
            offline_store, Evaluator(api_key=""), store_wait=0.05, store_poll=0.01
        )

        audit_id = await orchestrator.submit("https://example.com")
        await orchestrator.join()

        assert orchestrator.in_flight == 0
        assert (await offline_store.get(audit_id)).status == PENDING

    @pytest.mark.asyncio
    async def test_failure_is_recorded_once_store_reconnects(self, database, sample_verdict):
        store = JobStore(database)
        gate = asyncio.Event()

        async def slow_capture(url, timeout):
            await gate.wait()
            return b"jpeg", ExtractedContent()

        orchestrator = AuditOrchestrator(
            store,
            _configured_evaluator(verdict=sample_verdict),
            capture_fn=slow_capture,
            store_wait=5,
            store_poll=0.01,
        )
        audit_id = await orchestrator.submit("https://example.com")
        for _ in range(50):
            if (await store.get(audit_id)).status == PROCESSING:
                break
            await asyncio.sleep(0.01)

        await database.close()
        gate.set()
        await asyncio.sleep(0.05)
        # completed write failed; the run is waiting to record 'failed'
        assert orchestrator.in_flight == 1

        assert await database.connect()
        assert await orchestrator.join(timeout=5) == 0

        job = await store.get(audit_id)
        assert job.status == FAILED
        assert "not connected" in job.error

    @pytest.mark.asyncio
    async def test_statuses_observed_while_running_are_monotonic(self, offline_store, sample_verdict):
        gate = asyncio.Event()

        async def slow_capture(url, timeout):
            await gate.wait()
            return b"jpeg", ExtractedContent()

        evaluator = _configured_evaluator(verdict=sample_verdict)
        orchestrator = AuditOrchestrator(offline_store, evaluator, capture_fn=slow_capture)
        audit_id = await orchestrator.submit("https://example.com")

        seen = [(await offline_store.get(audit_id)).status]
        for _ in range(5):
            await asyncio.sleep(0)
            seen.append((await offline_store.get(audit_id)).status)
        assert seen[-1] == PROCESSING

        gate.set()
        await orchestrator.join()
        seen.append((await offline_store.get(audit_id)).status)

        ranks = [STATUS_RANK[s] for s in seen]
        assert ranks == sorted(ranks)
        assert seen[0] == PENDING
        assert seen[-1] == COMPLETED

    @pytest.mark.asyncio
    async def test_jobs_run_concurrently(self, offline_store, sample_verdict):
        gate = asyncio.Event()

        async def slow_capture(url, timeout):
            await gate.wait()
            return b"jpeg", ExtractedContent()

        orchestrator = AuditOrchestrator(
            offline_store, _configured_evaluator(verdict=sample_verdict), capture_fn=slow_capture
        )
        ids = [await orchestrator.submit(f"https://s{i}.example") for i in range(3)]
        await asyncio.sleep(0)
        assert orchestrator.in_flight == 3

        gate.set()
        assert await orchestrator.join(timeout=5) == 0
        for audit_id in ids:
            assert (await offline_store.get(audit_id)).status == COMPLETED
