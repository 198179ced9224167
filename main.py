"""
UX Audit service — main entry point.

Starts:
    • Structured JSON logging
    • SQLite durable store + keepalive (in-memory fallback while it is down)
    • FastAPI HTTP server (submission, polling, history, health)

Audits run as asyncio tasks inside this process; see workers/job_worker.py.
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

import uvicorn
from dotenv import load_dotenv

load_dotenv()  # must run before any module-level os.getenv() calls

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agent.evaluator import Evaluator
from db.database import Database
from db.store import JobStore
from models.errors import NotFoundError, PersistenceError, ValidationError
from workers.job_worker import AuditOrchestrator

HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "5"))
SHUTDOWN_GRACE: float = float(os.getenv("SHUTDOWN_GRACE", "10"))
# comma-separated; "*" lets any browser origin call the API
ALLOWED_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
]


# ── Structured JSON logging ────────────────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """One JSON object per log line — machine-readable and grep-friendly."""

    _SKIP = frozenset({
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "message", "taskName",
    })

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        out: dict = {
            "ts":     self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level":  record.levelname,
            "logger": record.name,
            "msg":    record.message,
        }
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        # Bubble up any extra= fields passed by callers
        for k, v in record.__dict__.items():
            if k not in self._SKIP:
                out[k] = v
        return json.dumps(out, default=str)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(_JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True


setup_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


# ── Wiring ─────────────────────────────────────────────────────────────────────

database = Database()
store = JobStore(database)
evaluator = Evaluator()
orchestrator = AuditOrchestrator(store, evaluator)


# ── Lifespan ───────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    if await database.connect():
        logger.info("Database ready")
    else:
        logger.warning("Starting with in-memory audit store")
    logger.info("Evaluator mode", extra={"llm": evaluator.mode})

    keepalive_task = asyncio.create_task(database.keepalive())

    yield

    logger.info("Shutting down", extra={"in_flight": orchestrator.in_flight})
    unfinished = await orchestrator.join(timeout=SHUTDOWN_GRACE)
    if unfinished:
        logger.warning("Audits still running at shutdown", extra={"count": unfinished})
    keepalive_task.cancel()
    with suppress(asyncio.CancelledError):
        await keepalive_task
    await database.close()


# ── FastAPI app ────────────────────────────────────────────────────────────────

app = FastAPI(title="UX Audit Service", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    if not loc and first.get("type") == "missing":
        # no JSON body at all
        detail = "URL is required"
    else:
        field = ".".join(loc) or "body"
        detail = f"Invalid request: {field}: {first.get('msg', 'invalid value')}"
    return JSONResponse(status_code=400, content={"detail": detail})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Audit not found"})


@app.exception_handler(PersistenceError)
async def _persistence_error(request: Request, exc: PersistenceError):
    logger.error("Store unavailable", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=503, content={"detail": "Audit store unavailable"})


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/status")
async def system_status():
    return {
        "status":    "ok",
        "database":  store.database_status(),
        "llm":       evaluator.mode,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class AnalyzeRequest(BaseModel):
    url: str | None = None


@app.post("/api/analyze", status_code=202)
async def analyze(req: AnalyzeRequest):
    audit_id = await orchestrator.submit(req.url)
    return {"auditId": audit_id, "status": "pending"}


@app.get("/api/status/{audit_id}")
async def audit_status(audit_id: str):
    job = await store.get(audit_id)
    return job.to_status()


@app.get("/api/audits/{audit_id}")
async def audit_detail(audit_id: str):
    return await audit_status(audit_id)


@app.get("/api/history")
async def history():
    return [job.to_summary() for job in await store.list_recent(HISTORY_LIMIT)]


@app.get("/api/audits")
async def list_audits():
    return await history()


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_config=None,   # let our handler take over
    )
