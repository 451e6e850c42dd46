"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest_asyncio.fixture
async def store():
    """Create in-memory event store for testing."""
    from pulse_core.storage import EventStore

    st = EventStore(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def query_engine(store):
    """Create QueryEngine with a tiny batch size so paging is exercised."""
    from pulse_core.query import QueryEngine

    return QueryEngine(store, batch_size=2)


@pytest.fixture
def dispatcher(store, query_engine):
    """Create LiveFeedDispatcher wired to the store."""
    from pulse_core.feed import LiveFeedDispatcher

    d = LiveFeedDispatcher(store, history=query_engine, queue_size=100)
    store.add_listener(d.publish)
    return d


@pytest.fixture
def retention(store):
    """Create RetentionManager without bounds; tests set them."""
    from pulse_core.retention import RetentionManager

    return RetentionManager(store)


@pytest.fixture
def event_logger(store):
    """Create EventLogger for a fixed session."""
    from pulse_core.logger import EventLogger

    return EventLogger(store, session="test-session")


@pytest_asyncio.fixture
async def handle():
    """Create an open in-memory StoreHandle."""
    from pulse_core import StoreConfig, StoreHandle

    h = StoreHandle(StoreConfig(db_path=":memory:"))
    await h.open()
    yield h
    await h.close()


@pytest.fixture
def make_event():
    """Factory for unsequenced events."""
    from pulse_core.models import Event

    def _make(
        message: str = "hello",
        level: str = "info",
        label: str = "app",
        metadata=None,
        age: timedelta | None = None,
        session: str | None = None,
    ) -> Event:
        timestamp = datetime.now(timezone.utc)
        if age is not None:
            timestamp -= age
        return Event.create(
            level=level,
            label=label,
            message=message,
            metadata=metadata,
            timestamp=timestamp,
            session=session,
        )

    return _make


@pytest_asyncio.fixture
async def filled_store(store, make_event):
    """Store with a small mixed log."""
    rows = [
        ("app started", "info", "app", {"version": "1.2"}),
        ("GET /users 200", "debug", "network", {"method": "GET", "status_code": "200"}),
        ("cache miss", "trace", "cache", {"key": "user:1"}),
        ("slow response", "warn", "network", {"method": "GET", "status_code": "200"}),
        ("POST /orders 500", "error", "network", {"method": "POST", "status_code": "500"}),
        ("database unreachable", "critical", "db", {"host": "db-1"}),
    ]
    for message, level, label, metadata in rows:
        await store.append(make_event(message, level, label, metadata))
    return store
