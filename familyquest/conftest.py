# familyquest/conftest.py
import os

import pytest

# Settings are read on first import; keep the cron scheduler out of test runs
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from familyquest.core.documents import InMemoryDocumentStore, set_document_store  # noqa: E402
from familyquest.features.ledger.service import LedgerService, set_ledger_service  # noqa: E402
from familyquest.tests.factories import FIXED_NOW, Seeder  # noqa: E402


@pytest.fixture(scope="function", autouse=True)
def memory_store():
    """Fresh in-memory store per test, also installed as the process-wide store."""
    store = InMemoryDocumentStore()
    set_document_store(store)
    set_ledger_service(None)
    yield store
    set_document_store(None)
    set_ledger_service(None)


@pytest.fixture
def seed(memory_store):
    return Seeder(memory_store)


@pytest.fixture
def ledger(memory_store):
    return LedgerService(memory_store, clock=lambda: FIXED_NOW)


@pytest.fixture
def client(ledger):
    from fastapi.testclient import TestClient

    from familyquest.main import app

    set_ledger_service(ledger)
    return TestClient(app)


@pytest.fixture
def sql_store():
    """SqlDocumentStore over a private in-memory SQLite database."""
    from familyquest.core.database import get_session_factory, init_engine, reset_database
    from familyquest.core.documents import SqlDocumentStore

    init_engine("sqlite://")
    reset_database()
    yield SqlDocumentStore(get_session_factory())
    reset_database()
