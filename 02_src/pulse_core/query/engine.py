"""Query engine over the event store."""

from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

from ..logging_config import get_logger
from ..models import Event
from ..storage import EventStore
from .predicate import MATCH_ALL, Predicate

logger = get_logger(__name__, component="query")


@dataclass
class QueryPage:
    """One page of query results.

    ``next_cursor`` is None once the scan reached the snapshot head.
    """

    events: list[Event] = field(default_factory=list)
    next_cursor: int | None = None


class IQueryEngine(Protocol):
    """Filtered, cursor-restartable reads of stored events."""

    def query(
        self,
        predicate: Predicate | None = None,
        limit: int | None = None,
        cursor: int = 0,
    ) -> AsyncIterator[Event]:
        """Lazily yield matching events with seq > cursor."""
        ...

    async def page(
        self,
        predicate: Predicate | None = None,
        limit: int = 100,
        cursor: int = 0,
    ) -> QueryPage:
        """Collect one page of matching events."""
        ...


class QueryEngine:
    """Lazy filtered reads.

    The indexed part of a predicate runs in SQL, one batch at a time; text
    and metadata checks run on each fetched row. Every query is bounded by
    the store head at the moment it starts and holds a snapshot pin so
    retention cannot evict rows it has not reached yet.
    """

    def __init__(self, store: EventStore, batch_size: int = 200):
        self._store = store
        self._batch_size = batch_size

    @property
    def store(self) -> EventStore:
        return self._store

    async def _scan(
        self,
        predicate: Predicate,
        cursor: int,
        upto: int,
        progress: list[int] | None = None,
    ) -> AsyncIterator[Event]:
        conditions, params = predicate.sql_clauses()
        token = self._store.pin(cursor + 1)
        after = cursor
        try:
            while after < upto:
                batch = await self._store.scan(
                    conditions, params, after=after, upto=upto, limit=self._batch_size
                )
                if not batch:
                    break
                for event in batch:
                    after = event.seq
                    if progress is not None:
                        progress[0] = after
                    if predicate.needs_scan and not predicate.matches_scan(event):
                        continue
                    yield event
                # Rows before the next batch are no longer needed.
                self._store.repin(token, after + 1)
                if len(batch) < self._batch_size:
                    break
        finally:
            self._store.unpin(token)

    async def query(
        self,
        predicate: Predicate | None = None,
        limit: int | None = None,
        cursor: int = 0,
        upto: int | None = None,
    ) -> AsyncIterator[Event]:
        """Lazily yield matching events with seq > cursor, seq-ascending.

        Args:
            predicate: Filter; everything when None.
            limit: Stop after this many matches.
            cursor: Exclusive lower bound (last seq already seen).
            upto: Inclusive upper bound; defaults to the current head.
        """
        predicate = predicate or MATCH_ALL
        if upto is None:
            upto = self._store.head
        if limit is not None and limit <= 0:
            return

        yielded = 0
        scan = self._scan(predicate, cursor, upto)
        try:
            async for event in scan:
                yield event
                yielded += 1
                if limit is not None and yielded >= limit:
                    break
        finally:
            await scan.aclose()

    async def page(
        self,
        predicate: Predicate | None = None,
        limit: int = 100,
        cursor: int = 0,
        upto: int | None = None,
    ) -> QueryPage:
        """Collect one page of matching events."""
        predicate = predicate or MATCH_ALL
        if upto is None:
            upto = self._store.head
        if limit <= 0:
            return QueryPage(events=[], next_cursor=None)

        events: list[Event] = []
        progress = [cursor]
        scan = self._scan(predicate, cursor, upto, progress)
        try:
            async for event in scan:
                events.append(event)
                if len(events) >= limit:
                    break
        finally:
            await scan.aclose()

        last_scanned = progress[0]
        next_cursor = last_scanned if last_scanned < upto and len(events) >= limit else None
        logger.debug(
            "Query page",
            extra={
                "context": {
                    "cursor": cursor,
                    "returned": len(events),
                    "next_cursor": next_cursor,
                }
            },
        )
        return QueryPage(events=events, next_cursor=next_cursor)

    async def count(self, predicate: Predicate | None = None) -> int:
        """Number of stored events matching the predicate."""
        predicate = predicate or MATCH_ALL
        if not predicate.needs_scan:
            conditions, params = predicate.sql_clauses()
            return await self._store.count_where(conditions, params)

        total = 0
        async for _ in self.query(predicate):
            total += 1
        return total
