"""Newline-delimited JSON snapshot export and import."""

import base64
import json
from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator, Iterable, TextIO

from ..logging_config import get_logger
from ..models import Event
from ..query import Predicate, QueryEngine
from ..storage import EventStore

logger = get_logger(__name__, component="export")


async def iter_ndjson(
    engine: QueryEngine,
    predicate: Predicate | None = None,
    include_payloads: bool = False,
    cursor: int = 0,
) -> AsyncIterator[str]:
    """Yield one JSON line (with trailing newline) per matching event."""
    async for event in engine.query(predicate, cursor=cursor):
        record = event.to_dict()
        if include_payloads and event.payload_ref:
            data = await engine.store.get_payload(event.payload_ref)
            if data is not None:
                record["payload"] = base64.b64encode(data).decode("ascii")
        yield json.dumps(record, ensure_ascii=False) + "\n"


async def export_ndjson(
    engine: QueryEngine,
    target: str | Path | TextIO,
    predicate: Predicate | None = None,
    include_payloads: bool = False,
) -> int:
    """Write a snapshot to a path or text stream; return the record count."""
    if isinstance(target, (str, Path)):
        with open(target, "w", encoding="utf-8") as f:
            return await export_ndjson(engine, f, predicate, include_payloads)

    written = 0
    async for line in iter_ndjson(engine, predicate, include_payloads):
        target.write(line)
        written += 1

    logger.info("Exported events", extra={"context": {"count": written}})
    return written


async def import_ndjson(
    store: EventStore,
    source: str | Path | Iterable[str],
    strict: bool | None = None,
) -> int:
    """Append records from an export; return the number imported.

    Events get new sequence ids in this store. Blank lines are skipped;
    malformed records raise ValueError naming the line.
    """
    if isinstance(source, (str, Path)):
        with open(source, "r", encoding="utf-8") as f:
            return await import_ndjson(store, f, strict)

    imported = 0
    for line_no, line in enumerate(source, start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
            event = Event.from_dict(record)
            payload = (
                base64.b64decode(record["payload"]) if record.get("payload") else None
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed record on line {line_no}: {e}") from e

        if payload is None:
            # Blob was not exported; keep no dangling reference.
            event = replace(event, payload_ref=None)
        await store.append(event, payload=payload, strict=strict)
        imported += 1

    logger.info("Imported events", extra={"context": {"count": imported}})
    return imported
