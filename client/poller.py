"""
HTTP client for the audit API with a bounded, backing-off poller.

    async with AuditClient("http://localhost:8000") as client:
        audit_id = await client.submit("https://example.com")
        job = await client.wait_for(audit_id)

wait_for() polls /api/status/{id} with exponential backoff (1 s, 2 s, 4 s …
capped at 10 s) and gives up with PollTimeout after `max_wait` seconds, so a
stuck audit never turns into an unbounded stream of requests.
"""

import asyncio
import logging
import time

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})


class AuditClientError(Exception):
    """Raised when the API rejects a request."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class PollTimeout(Exception):
    """Raised when an audit does not reach a terminal status in time."""

    def __init__(self, audit_id: str, waited: float, last_status: str | None):
        super().__init__(
            f"Audit {audit_id} still '{last_status}' after {waited:.1f}s"
        )
        self.audit_id = audit_id
        self.waited = waited
        self.last_status = last_status


def backoff_delays(initial: float, factor: float, max_delay: float):
    delay = initial
    while True:
        yield min(delay, max_delay)
        delay *= factor


class AuditClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "AuditClient":
        return self

    async def __aexit__(self, *_) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict | list:
        resp = await self._http.request(method, path, **kwargs)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise AuditClientError(resp.status_code, str(detail))
        return resp.json()

    async def submit(self, url: str) -> str:
        data = await self._request("POST", "/api/analyze", json={"url": url})
        return data["auditId"]

    async def status(self, audit_id: str) -> dict:
        return await self._request("GET", f"/api/status/{audit_id}")

    async def history(self) -> list[dict]:
        return await self._request("GET", "/api/history")

    async def health(self) -> dict:
        return await self._request("GET", "/api/status")

    async def wait_for(
        self,
        audit_id: str,
        initial_delay: float = 1.0,
        factor: float = 2.0,
        max_delay: float = 10.0,
        max_wait: float = 180.0,
    ) -> dict:
        """Poll until the audit is completed or failed; return the final status body."""
        started = time.monotonic()
        last_status: str | None = None

        for delay in backoff_delays(initial_delay, factor, max_delay):
            try:
                job = await self.status(audit_id)
            except AuditClientError as exc:
                # 5xx is transient; anything else (404) is final
                if exc.status_code < 500:
                    raise
                logger.warning("Status poll failed", extra={"audit_id": audit_id, "error": str(exc)})
            else:
                last_status = job.get("status")
                if last_status in TERMINAL_STATUSES:
                    return job

            waited = time.monotonic() - started
            if waited + delay > max_wait:
                raise PollTimeout(audit_id, waited, last_status)
            await asyncio.sleep(delay)
