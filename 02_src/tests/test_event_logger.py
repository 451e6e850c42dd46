"""Tests for EventLogger and StoreLogHandler."""

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from pulse_core.logger import NETWORK_LABEL, EventLogger, StoreLogHandler, level_for_record
from pulse_core.models import Level


class TestEventLoggerLog:
    """Tests for EventLogger.log() and level helpers."""

    @pytest.mark.asyncio
    async def test_log_appends_event(self, event_logger, store):
        """Test that log() creates a stored Event."""
        seq = await event_logger.log(
            "warn", "disk almost full", label="system", metadata={"used": "93%"}
        )

        event = await store.get(seq)
        assert event.level is Level.WARN
        assert event.label == "system"
        assert event.message == "disk almost full"
        assert event.get("used") == "93%"
        assert event.session == "test-session"

    @pytest.mark.asyncio
    async def test_log_generates_timestamp(self, event_logger, store):
        """Test that log() stamps the current time."""
        before = datetime.now(timezone.utc)
        seq = await event_logger.log("info", "tick")
        after = datetime.now(timezone.utc)

        event = await store.get(seq)
        assert before <= event.timestamp <= after

    @pytest.mark.asyncio
    async def test_default_label(self, store):
        """Test that events without a label get the default one."""
        logger = EventLogger(store, default_label="worker")
        seq = await logger.log(Level.INFO, "started")
        assert (await store.get(seq)).label == "worker"

    @pytest.mark.asyncio
    async def test_log_with_payload(self, event_logger, store):
        """Test that payload bytes are stored as a blob."""
        seq = await event_logger.log("debug", "dump", payload=b"\x00\x01")
        event = await store.get(seq)
        assert await store.get_payload(event.payload_ref) == b"\x00\x01"

    @pytest.mark.asyncio
    async def test_level_helpers(self, event_logger, store):
        """Test each level helper."""
        await event_logger.trace("t")
        await event_logger.debug("d")
        await event_logger.info("i")
        await event_logger.warn("w")
        await event_logger.error("e", label="db", table="users")
        await event_logger.critical("c")

        events = await store.read()
        assert [e.level for e in events] == list(Level)
        assert events[4].label == "db"
        assert events[4].get("table") == "users"

    @pytest.mark.asyncio
    async def test_unknown_level_raises(self, event_logger, store):
        """Test that an unknown level is rejected before appending."""
        with pytest.raises(ValueError):
            await event_logger.log("loud", "x")
        assert store.count == 0


class TestEventLoggerRequests:
    """Tests for EventLogger.log_request()."""

    @pytest.mark.asyncio
    async def test_successful_request(self, event_logger, store):
        """Test a 200 response."""
        seq = await event_logger.log_request(
            "get", "https://api.test/users", status_code=200, duration=0.1234
        )

        event = await store.get(seq)
        assert event.level is Level.INFO
        assert event.label == NETWORK_LABEL
        assert event.message == "GET https://api.test/users 200"
        assert event.get("method") == "GET"
        assert event.get("status_code") == "200"
        assert event.get("duration_ms") == "123.4"

    @pytest.mark.asyncio
    async def test_failed_status_is_error(self, event_logger, store):
        """Test that HTTP errors are logged at error level."""
        seq = await event_logger.log_request(
            "POST", "/orders", status_code=500, response_body=b'{"error": "boom"}'
        )

        event = await store.get(seq)
        assert event.level is Level.ERROR
        assert event.get("response_size") == "17"
        assert await store.get_payload(event.payload_ref) == b'{"error": "boom"}'

    @pytest.mark.asyncio
    async def test_transport_error(self, event_logger, store):
        """Test a request that never got a response."""
        seq = await event_logger.log_request("GET", "/slow", error="timeout")

        event = await store.get(seq)
        assert event.level is Level.ERROR
        assert event.message == "GET /slow failed: timeout"
        assert event.get("status_code") is None
        assert event.payload_ref is None


class TestStoreLogHandler:
    """Tests for the stdlib logging bridge."""

    @pytest.fixture
    def app_logger(self):
        log = logging.getLogger("myapp.worker")
        log.setLevel(logging.DEBUG)
        log.propagate = False
        yield log
        for handler in list(log.handlers):
            log.removeHandler(handler)
        log.propagate = True

    def test_level_mapping(self):
        """Test stdlib level numbers to event levels."""
        assert level_for_record(5) is Level.TRACE
        assert level_for_record(logging.DEBUG) is Level.DEBUG
        assert level_for_record(logging.INFO) is Level.INFO
        assert level_for_record(logging.WARNING) is Level.WARN
        assert level_for_record(logging.ERROR) is Level.ERROR
        assert level_for_record(logging.CRITICAL) is Level.CRITICAL

    @pytest.mark.asyncio
    async def test_record_becomes_event(self, event_logger, store, app_logger):
        """Test that a record on the loop thread is appended."""
        handler = StoreLogHandler(event_logger)
        app_logger.addHandler(handler)

        app_logger.warning("queue is %d%% full", 90)
        await handler.drain()

        events = await store.read()
        assert len(events) == 1
        assert events[0].level is Level.WARN
        assert events[0].label == "myapp.worker"
        assert events[0].message == "queue is 90% full"
        assert events[0].get("function") == "test_record_becomes_event"

    @pytest.mark.asyncio
    async def test_record_from_other_thread(self, event_logger, store, app_logger):
        """Test that records from worker threads reach the store."""
        handler = StoreLogHandler(event_logger)
        app_logger.addHandler(handler)

        await asyncio.to_thread(app_logger.info, "from a thread")
        await handler.drain()

        events = await store.read()
        assert [e.message for e in events] == ["from a thread"]

    @pytest.mark.asyncio
    async def test_exception_info(self, event_logger, store, app_logger):
        """Test that tracebacks are kept in metadata."""
        handler = StoreLogHandler(event_logger)
        app_logger.addHandler(handler)

        try:
            raise KeyError("missing")
        except KeyError:
            app_logger.exception("lookup failed")
        await handler.drain()

        event = (await store.read())[0]
        assert event.level is Level.ERROR
        assert "KeyError" in event.get("exception")

    @pytest.mark.asyncio
    async def test_own_loggers_are_ignored(self, event_logger, store):
        """Test that store diagnostics are not fed back into the store."""
        handler = StoreLogHandler(event_logger)
        record = logging.LogRecord(
            "pulse_core.storage.storage", logging.INFO, __file__, 1, "opened", None, None
        )
        handler.emit(record)
        await handler.drain()
        assert store.count == 0
