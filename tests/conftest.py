"""
Pytest Configuration and Shared Fixtures

Provides an in-memory ledger database and doubles for the sheet and the chat.
"""

import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from teambot.database import Base  # noqa: E402
from teambot.models import account, payment  # noqa: E402,F401
from teambot.services.ledger import LedgerStore  # noqa: E402
from tests.fixtures.doubles import HOSTS, FakeNotifier, FakeSheet  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return LedgerStore(session_factory)


@pytest.fixture
def sheet():
    return FakeSheet(["Alice", "Bob", HOSTS], {0: "=120", 1: "", 2: "=0"})


@pytest.fixture
def notifier():
    return FakeNotifier()
