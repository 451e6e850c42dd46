"""SQLite event store."""

import asyncio
import hashlib
import itertools
import json
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import CapacityExceeded, StorageError
from ..logging_config import get_logger
from ..models import Event, Level, from_micros, to_micros

logger = get_logger(__name__, component="store")

EventListener = Callable[[Event], None]

_EVENT_COLUMNS = "seq, ts, level, label, message, metadata, payload_ref, session"


class IEventStore(Protocol):
    """Append-only persistence of structured events (SQLite)."""

    @property
    def head(self) -> int:
        """Last sequence id issued (0 for a new store)."""
        ...

    @property
    def count(self) -> int:
        """Number of events currently stored."""
        ...

    async def init(self) -> None:
        """Open the database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    async def append(
        self,
        event: Event,
        payload: bytes | None = None,
        strict: bool | None = None,
    ) -> int:
        """Persist an event, notify listeners, return its sequence id."""
        ...

    async def read(self, ids: Iterable[int] | None = None) -> list[Event]:
        """Read events by range/ids (all when None), seq-ascending."""
        ...

    async def scan(
        self,
        conditions: list[str],
        params: list[Any],
        after: int,
        upto: int,
        limit: int,
    ) -> list[Event]:
        """Events with after < seq <= upto matching SQL conditions."""
        ...

    async def evict_through(self, seq: int) -> int:
        """Remove the prefix of events up to seq (bounded by pins)."""
        ...

    def pin(self, floor: int) -> int:
        """Protect events with seq >= floor from eviction; return a token."""
        ...

    def unpin(self, token: int) -> None:
        """Release a pin."""
        ...

    def add_listener(self, listener: EventListener) -> None:
        """Register a post-commit append hook."""
        ...


class EventStore:
    """SQLite event store.

    One connection is shared by readers and the single writer section.
    Readers only see rows up to ``head``, which moves after commit, so an
    append is durable before it becomes visible.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        max_events: int | None = None,
        strict_capacity: bool = False,
    ):
        self._db_path = resolve_db_path(db_path)
        self._max_events = max_events
        self._strict_capacity = strict_capacity
        self._conn: aiosqlite.Connection | None = None

        self._write_lock = asyncio.Lock()
        self._head = 0
        self._count = 0
        self._listeners: list[EventListener] = []

        self._pins: dict[int, int] = {}
        self._pin_tokens = itertools.count(1)

    @property
    def head(self) -> int:
        return self._head

    @property
    def count(self) -> int:
        return self._count

    @property
    def max_events(self) -> int | None:
        return self._max_events

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def init(self) -> None:
        """Open the database and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self._db_path)
            if self._db_path != ":memory:":
                await self._conn.execute("PRAGMA journal_mode=WAL")
                await self._conn.execute("PRAGMA synchronous=NORMAL")

            schema_path = Path(__file__).parent / "schema.sql"
            with open(schema_path, "r", encoding="utf-8") as f:
                schema_sql = f.read()
            await self._conn.executescript(schema_sql)
            await self._conn.commit()

            cursor = await self._conn.execute(
                "SELECT value FROM store_meta WHERE key = 'head'"
            )
            row = await cursor.fetchone()
            cursor = await self._conn.execute(
                "SELECT COALESCE(MAX(seq), 0), COUNT(*) FROM events"
            )
            max_seq, count = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to open store at {self._db_path}: {e}") from e

        self._head = max(row[0] if row else 0, max_seq)
        self._count = count
        logger.info(
            "Event store opened",
            extra={"context": {"path": str(self._db_path), "head": self._head}},
        )

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Event store closed")

    def _require(self) -> aiosqlite.Connection:
        if not self._conn:
            raise StorageError("Storage not initialized")
        return self._conn

    # Listeners
    def add_listener(self, listener: EventListener) -> None:
        """Register a post-commit append hook."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Unregister a hook added with add_listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in append listener %r", listener)

    # Snapshot pins
    def pin(self, floor: int) -> int:
        """Protect events with seq >= floor from eviction; return a token."""
        token = next(self._pin_tokens)
        self._pins[token] = floor
        return token

    def repin(self, token: int, floor: int) -> None:
        """Move an existing pin forward."""
        if token in self._pins:
            self._pins[token] = max(self._pins[token], floor)

    def unpin(self, token: int) -> None:
        """Release a pin (no-op for unknown tokens)."""
        self._pins.pop(token, None)

    @property
    def pinned_floor(self) -> int | None:
        """Lowest protected seq, None when nothing is pinned."""
        return min(self._pins.values()) if self._pins else None

    # Writes
    async def append(
        self,
        event: Event,
        payload: bytes | None = None,
        strict: bool | None = None,
    ) -> int:
        """Persist an event, notify listeners, return its sequence id.

        Args:
            event: Unsequenced event; a preset ``seq`` is ignored.
            payload: Optional binary payload stored as a deduplicated blob.
            strict: Refuse to grow past ``max_events`` instead of relying on
                    eviction. Defaults to the store's ``strict_capacity``.
        """
        conn = self._require()
        if strict is None:
            strict = self._strict_capacity

        async with self._write_lock:
            if strict and self._max_events is not None and self._count >= self._max_events:
                raise CapacityExceeded(self._count, self._max_events)

            seq = self._head + 1
            payload_ref = event.payload_ref
            try:
                if payload is not None:
                    payload_ref = hashlib.sha1(payload).hexdigest()
                    await conn.execute(
                        """
                        INSERT OR IGNORE INTO blobs (ref, data, size)
                        VALUES (?, ?, ?)
                        """,
                        (payload_ref, payload, len(payload)),
                    )

                await conn.execute(
                    f"""
                    INSERT INTO events ({_EVENT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        seq,
                        to_micros(event.timestamp),
                        event.level.rank,
                        event.label,
                        event.message,
                        json.dumps([list(pair) for pair in event.metadata]),
                        payload_ref,
                        event.session,
                    ),
                )
                await conn.execute(
                    "INSERT OR REPLACE INTO store_meta (key, value) VALUES ('head', ?)",
                    (seq,),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await self._rollback(conn)
                raise StorageError(f"Failed to append event: {e}") from e

            self._head = seq
            self._count += 1
            stored = event.with_seq(seq, payload_ref)
            self._notify(stored)

        return seq

    async def evict_through(self, seq: int) -> int:
        """Remove events with seq' <= seq, never crossing a pinned floor.

        Returns the number of events removed. Blobs left without any
        referencing event are removed in the same transaction.
        """
        conn = self._require()

        async with self._write_lock:
            ceiling = min(seq, self._head)
            floor = self.pinned_floor
            if floor is not None:
                ceiling = min(ceiling, floor - 1)
            if ceiling <= 0:
                return 0

            try:
                cursor = await conn.execute(
                    "DELETE FROM events WHERE seq <= ?", (ceiling,)
                )
                removed = cursor.rowcount
                await conn.execute(
                    """
                    DELETE FROM blobs
                    WHERE ref NOT IN (
                        SELECT payload_ref FROM events WHERE payload_ref IS NOT NULL
                    )
                    """
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await self._rollback(conn)
                raise StorageError(f"Failed to evict events: {e}") from e

            self._count -= removed

        if removed:
            logger.debug(
                "Evicted events",
                extra={"context": {"through": ceiling, "removed": removed}},
            )
        return removed

    async def clear(self) -> None:
        """Remove all events and blobs; sequence ids are not reused."""
        conn = self._require()
        async with self._write_lock:
            try:
                for table in ("events", "blobs"):
                    await conn.execute(f"DELETE FROM {table}")
                await conn.commit()
            except aiosqlite.Error as e:
                await self._rollback(conn)
                raise StorageError(f"Failed to clear store: {e}") from e
            self._count = 0

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error:
            logger.exception("Rollback failed")

    # Reads
    async def _fetch(self, query: str, params: Iterable[Any]) -> list[tuple]:
        conn = self._require()
        try:
            cursor = await conn.execute(query, tuple(params))
            return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read events: {e}") from e

    async def read(self, ids: Iterable[int] | None = None) -> list[Event]:
        """Read events, seq-ascending.

        Args:
            ids: ``range`` with step 1 (read as an interval), any iterable of
                 sequence ids, or None for every stored event. Unknown or
                 evicted ids are skipped.
        """
        head = self._head
        if ids is None:
            rows = await self._fetch(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE seq <= ? ORDER BY seq",
                (head,),
            )
        elif isinstance(ids, range) and ids.step == 1:
            if not ids:
                return []
            rows = await self._fetch(
                f"""
                SELECT {_EVENT_COLUMNS} FROM events
                WHERE seq >= ? AND seq <= ?
                ORDER BY seq
                """,
                (ids.start, min(ids.stop - 1, head)),
            )
        else:
            wanted = sorted({i for i in ids if 0 < i <= head})
            rows = []
            # Stay below SQLite's bound-parameter limit.
            for start in range(0, len(wanted), 500):
                chunk = wanted[start:start + 500]
                rows.extend(
                    await self._fetch(
                        f"""
                        SELECT {_EVENT_COLUMNS} FROM events
                        WHERE seq IN ({','.join('?' * len(chunk))})
                        ORDER BY seq
                        """,
                        chunk,
                    )
                )

        return [self._row_to_event(row) for row in rows]

    async def get(self, seq: int) -> Event | None:
        """Get one event by sequence id."""
        events = await self.read([seq])
        return events[0] if events else None

    async def scan(
        self,
        conditions: list[str],
        params: list[Any],
        after: int,
        upto: int,
        limit: int,
    ) -> list[Event]:
        """Events with after < seq <= upto matching SQL conditions."""
        where = " AND ".join(["seq > ?", "seq <= ?", *conditions])
        rows = await self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS} FROM events
            WHERE {where}
            ORDER BY seq
            LIMIT ?
            """,
            [after, min(upto, self._head), *params, limit],
        )
        return [self._row_to_event(row) for row in rows]

    async def count_where(
        self, conditions: list[str], params: list[Any], after: int = 0
    ) -> int:
        """Number of visible events matching SQL conditions."""
        where = " AND ".join(["seq > ?", "seq <= ?", *conditions])
        rows = await self._fetch(
            f"SELECT COUNT(*) FROM events WHERE {where}",
            [after, self._head, *params],
        )
        return rows[0][0]

    async def nth_seq(self, offset: int) -> int | None:
        """Sequence id of the event at 0-based position ``offset``."""
        rows = await self._fetch(
            "SELECT seq FROM events WHERE seq <= ? ORDER BY seq LIMIT 1 OFFSET ?",
            (self._head, offset),
        )
        return rows[0][0] if rows else None

    async def first_seq_since(self, micros: int) -> int | None:
        """Lowest seq whose timestamp is at or after ``micros``."""
        rows = await self._fetch(
            "SELECT MIN(seq) FROM events WHERE ts >= ? AND seq <= ?",
            (micros, self._head),
        )
        return rows[0][0] if rows else None

    async def get_payload(self, ref: str) -> bytes | None:
        """Get a payload blob by reference."""
        rows = await self._fetch("SELECT data FROM blobs WHERE ref = ?", (ref,))
        return bytes(rows[0][0]) if rows else None

    async def labels(self) -> list[str]:
        """Distinct labels of stored events."""
        rows = await self._fetch(
            "SELECT DISTINCT label FROM events WHERE seq <= ? ORDER BY label",
            (self._head,),
        )
        return [row[0] for row in rows]

    async def stats(self) -> dict[str, Any]:
        """Counts and bounds of the stored log."""
        bounds = await self._fetch(
            "SELECT MIN(seq), MAX(seq), COUNT(*) FROM events WHERE seq <= ?",
            (self._head,),
        )
        by_level = await self._fetch(
            "SELECT level, COUNT(*) FROM events WHERE seq <= ? GROUP BY level",
            (self._head,),
        )
        blobs = await self._fetch("SELECT COUNT(*), COALESCE(SUM(size), 0) FROM blobs", ())

        first_seq, last_seq, count = bounds[0]
        levels = {level.value: 0 for level in Level}
        for rank, level_count in by_level:
            levels[Level.from_rank(rank).value] = level_count

        return {
            "count": count,
            "first_seq": first_seq,
            "last_seq": last_seq,
            "head": self._head,
            "levels": levels,
            "blob_count": blobs[0][0],
            "blob_bytes": blobs[0][1],
        }

    @staticmethod
    def _row_to_event(row: tuple) -> Event:
        return Event(
            seq=row[0],
            timestamp=from_micros(row[1]),
            level=Level.from_rank(row[2]),
            label=row[3],
            message=row[4],
            metadata=tuple((k, v) for k, v in json.loads(row[5])),
            payload_ref=row[6],
            session=row[7],
        )
