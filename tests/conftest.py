"""
Test configuration and fixtures for the UX audit service.

The environment is fixed before anything imports `main`: a throwaway SQLite
file for the durable store, no evaluation credential (demo mode) and a
keepalive interval long enough that it never reconnects mid-test.
"""

import copy
import os
import tempfile
from typing import Generator

_tmp_dir = tempfile.mkdtemp(prefix="ux-audit-tests-")
os.environ["DB_PATH"] = os.path.join(_tmp_dir, "audits.db")
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["DB_KEEPALIVE_INTERVAL"] = "3600"
os.environ["SHUTDOWN_GRACE"] = "5"
os.environ["STORE_RECOVERY_WAIT"] = "2"

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from db.database import Database
from db.memory import MemoryJobStore
from db.store import JobStore
from models.verdict import Verdict


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """TestClient with the lifespan running (durable store connected)."""
    with TestClient(test_app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def database(tmp_path):
    """A connected durable store on its own file."""
    db = Database(str(tmp_path / "store.db"))
    assert await db.connect()
    yield db
    await db.close()


@pytest.fixture
def offline_store() -> JobStore:
    """Facade whose durable backend was never connected."""
    return JobStore(Database("/nonexistent-dir/never.db"), MemoryJobStore())


@pytest.fixture
def verdict_payload() -> dict:
    return copy.deepcopy(SAMPLE_VERDICT)


@pytest.fixture
def sample_verdict(verdict_payload) -> Verdict:
    return Verdict.model_validate(verdict_payload)


SAMPLE_VERDICT = {
    "overall_score": 72,
    "summary_reasoning": "Clear layout, weak contrast on the primary action.",
    "top_severe_issues": [
        {
            "title": "Faint sign-up button",
            "severity": "high",
            "evidence": "'Sign up' is light grey on white",
            "current_state": "The main action is easy to miss.",
            "recommended_fix": "Use the brand blue with white text.",
        },
        {
            "title": "Crowded header",
            "severity": "medium",
            "evidence": "9 links in the top bar",
            "current_state": "Navigation is hard to scan.",
            "recommended_fix": "Move secondary links into a menu.",
        },
        {
            "title": "No pricing link",
            "severity": "low",
            "evidence": "Pricing only reachable from the footer",
            "current_state": "Visitors cannot compare plans quickly.",
            "recommended_fix": "Add 'Pricing' to the header.",
        },
    ],
    "category_breakdown": {
        "clarity": [{"issue": "Vague hero copy", "impact": "Slower understanding."}],
        "layout": [{"issue": "Tight spacing", "impact": "Weak hierarchy."}],
        "navigation": [{"issue": "Crowded header", "impact": "Hard to scan."}],
        "accessibility": [{"issue": "Low contrast", "impact": "Fails WCAG AA."}],
        "trust": [],
    },
}
