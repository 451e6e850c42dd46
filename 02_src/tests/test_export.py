"""Tests for NDJSON export and import."""

import io
import json

import pytest
import pytest_asyncio

from pulse_core.export import export_ndjson, import_ndjson, iter_ndjson
from pulse_core.models import Level
from pulse_core.query import Predicate
from pulse_core.storage import EventStore


@pytest_asyncio.fixture
async def second_store():
    st = EventStore(":memory:")
    await st.init()
    yield st
    await st.close()


class TestExport:
    """Tests for export_ndjson()."""

    @pytest.mark.asyncio
    async def test_export_one_record_per_line(self, filled_store, query_engine):
        """Test that every event becomes one JSON line."""
        buffer = io.StringIO()
        written = await export_ndjson(query_engine, buffer)

        lines = buffer.getvalue().splitlines()
        assert written == 6
        assert len(lines) == 6
        records = [json.loads(line) for line in lines]
        assert [r["seq"] for r in records] == [1, 2, 3, 4, 5, 6]
        assert records[0]["level"] == "info"
        assert records[0]["metadata"] == [["version", "1.2"]]

    @pytest.mark.asyncio
    async def test_export_with_predicate(self, filled_store, query_engine):
        """Test exporting a filtered snapshot."""
        buffer = io.StringIO()
        written = await export_ndjson(
            query_engine, buffer, Predicate(min_level="error")
        )
        assert written == 2
        messages = [json.loads(line)["message"] for line in buffer.getvalue().splitlines()]
        assert messages == ["POST /orders 500", "database unreachable"]

    @pytest.mark.asyncio
    async def test_export_to_path(self, filled_store, query_engine, tmp_path):
        """Test exporting to a file."""
        target = tmp_path / "snapshot.ndjson"
        assert await export_ndjson(query_engine, target) == 6
        assert len(target.read_text(encoding="utf-8").splitlines()) == 6

    @pytest.mark.asyncio
    async def test_payloads_only_on_request(self, store, query_engine, make_event):
        """Test base64 payload inclusion."""
        await store.append(make_event(), payload=b"raw body")

        plain = [json.loads(line) async for line in iter_ndjson(query_engine)]
        assert "payload" not in plain[0]
        assert plain[0]["payload_ref"] is not None

        full = [
            json.loads(line)
            async for line in iter_ndjson(query_engine, include_payloads=True)
        ]
        assert full[0]["payload"] == "cmF3IGJvZHk="


class TestImport:
    """Tests for import_ndjson()."""

    @pytest.mark.asyncio
    async def test_round_trip_into_new_store(
        self, store, query_engine, make_event, second_store
    ):
        """Test restoring an export with payloads into another store."""
        await store.append(make_event("a", level="warn", session="s1"))
        await store.append(make_event("b"), payload=b"body")

        buffer = io.StringIO()
        await export_ndjson(query_engine, buffer, include_payloads=True)
        buffer.seek(0)

        assert await import_ndjson(second_store, buffer) == 2
        events = await second_store.read()
        assert [e.message for e in events] == ["a", "b"]
        assert events[0].level is Level.WARN
        assert events[0].session == "s1"
        assert await second_store.get_payload(events[1].payload_ref) == b"body"

    @pytest.mark.asyncio
    async def test_import_gets_new_ids(self, second_store, make_event):
        """Test that imported events are appended after existing ones."""
        await second_store.append(make_event("existing"))
        line = json.dumps(make_event("imported").with_seq(40).to_dict())

        await import_ndjson(second_store, [line, "", "  "])
        assert [e.seq for e in await second_store.read()] == [1, 2]

    @pytest.mark.asyncio
    async def test_missing_payload_drops_reference(self, second_store, make_event):
        """Test that records exported without payloads have no dangling ref."""
        record = make_event().with_seq(1, payload_ref="deadbeef").to_dict()

        await import_ndjson(second_store, [json.dumps(record)])
        event = (await second_store.read())[0]
        assert event.payload_ref is None

    @pytest.mark.asyncio
    async def test_malformed_line(self, second_store, make_event):
        """Test that bad input names the offending line."""
        valid = json.dumps(make_event().to_dict())
        with pytest.raises(ValueError, match="line 2"):
            await import_ndjson(second_store, [valid, '{"level": "info"}'])
        assert second_store.count == 1
