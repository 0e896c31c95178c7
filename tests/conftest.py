"""
Test configuration and fixtures for the SafeScan engine.

Every test gets its own SQLite file so concurrent-writer tests exercise real
transactions. The sandbox, queue and analyzer are replaced by the fakes in
tests/fakes.py.
"""

import os
import tempfile
from typing import Generator

from dotenv import load_dotenv

import pytest
from fastapi.testclient import TestClient

load_dotenv()

_test_dir = tempfile.mkdtemp(prefix="safescan-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_test_dir, 'app.db')}"
os.environ["LOG_DIR"] = os.path.join(_test_dir, "logs")

from safescan.features.scan.services.audit.audit_log import AuditLog  # noqa: E402
from safescan.features.scan.services.cache.result_cache import ResultCache, ResultStore  # noqa: E402
from safescan.features.scan.services.credits.ledger import CreditLedger  # noqa: E402
from safescan.features.scan.services.jobs.job_store import JobStore  # noqa: E402
from safescan.platform.db.session import create_session_factory  # noqa: E402


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(f"sqlite:///{tmp_path / 'scan.db'}", create_tables=True)


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def ledger(session_factory):
    return CreditLedger(session_factory)


@pytest.fixture
def result_cache(session_factory):
    return ResultCache(session_factory)


@pytest.fixture
def result_store(session_factory):
    return ResultStore(session_factory)


@pytest.fixture
def audit_log(session_factory):
    return AuditLog(session_factory)


@pytest.fixture
def funded_job(ledger):
    """A QUEUED job owned by u1, created through the ledger."""
    ledger.add_credits("u1", 5)
    return ledger.reserve_and_create_job("u1", "https://example.com", 1).value


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from safescan.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    """
    with TestClient(test_app) as test_client:
        yield test_client
