"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app module is imported,
so the module-level settings, engine and logging pick them up.
"""

import os
import threading
import time

os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite:///./test_dispatch.db")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["WEBHOOK_URL"] = "http://webhook.test/send"
os.environ["WEBHOOK_AUTH_KEY"] = ""
os.environ["SCHEDULE_SECONDS"] = "3600"
os.environ["MSG_CHAR_LIMIT"] = "160"
os.environ["MSG_PER_TICK"] = "2"
os.environ["SCHEDULER_AUTOSTART"] = "false"

import pytest  # noqa: E402

# Clear settings cache before any app imports to ensure test env vars are used
from app.config import get_settings  # noqa: E402
get_settings.cache_clear()

from app.storage import Base, MessageStore, engine  # noqa: E402
import app.models  # noqa: E402,F401  (registers the messages table)


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll `predicate` until it is truthy or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def scheduler_threads() -> list:
    return [t for t in threading.enumerate() if t.name == "dispatch-scheduler" and t.is_alive()]


@pytest.fixture(scope="function")
def db():
    """Fresh messages table for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db) -> MessageStore:
    return MessageStore()
