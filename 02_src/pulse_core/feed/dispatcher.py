"""Live feed dispatcher: fan-out of appended events to subscribers."""

import asyncio
import itertools
from collections import deque
from typing import Protocol

from ..errors import SubscriptionClosed
from ..logging_config import get_logger
from ..models import Dropped, Event
from ..query import MATCH_ALL, Predicate, QueryEngine
from ..storage import EventStore

logger = get_logger(__name__, component="feed")

FeedItem = Event | Dropped


class Subscription:
    """One live listener with its own bounded delivery queue.

    Created by ``LiveFeedDispatcher.subscribe``; a single consumer drains it
    with ``get()`` or ``async for``. When the queue is full the oldest
    undelivered event is discarded and counted; the count is handed to the
    consumer as one ``Dropped`` marker before the surviving events.
    """

    def __init__(
        self,
        sub_id: int,
        predicate: Predicate,
        queue_size: int,
        live_floor: int,
        history: QueryEngine | None = None,
        since: int | None = None,
    ):
        self.id = sub_id
        self.predicate = predicate
        self._queue: deque[Event] = deque()
        self._queue_size = queue_size
        self._live_floor = live_floor
        self._cursor = live_floor if since is None else since
        self._pending_dropped = 0
        self._dropped_total = 0
        self._wakeup = asyncio.Event()
        self._closed = False

        # Backfill of (since, live_floor] read from history before live events.
        self._history = history
        self._backfill: deque[Event] = deque()
        self._backfill_cursor: int | None = None
        self._pin: int | None = None
        if since is not None and history is not None and since < live_floor:
            self._backfill_cursor = since
            self._pin = history.store.pin(since + 1)

    @property
    def cursor(self) -> int:
        """Sequence id of the last delivered event."""
        return self._cursor

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Queued live events not yet delivered."""
        return len(self._queue)

    @property
    def dropped_total(self) -> int:
        """Events lost to overflow over the subscription's lifetime."""
        return self._dropped_total

    def _offer(self, event: Event) -> None:
        if self._closed or event.seq <= self._live_floor:
            return
        if not self.predicate.matches(event):
            return

        if len(self._queue) >= self._queue_size:
            self._queue.popleft()
            self._pending_dropped += 1
            self._dropped_total += 1
        self._queue.append(event)
        self._wakeup.set()

    def _close(self) -> None:
        self._closed = True
        self._queue.clear()
        self._backfill.clear()
        self._release_backfill()
        self._wakeup.set()

    def _release_backfill(self) -> None:
        self._backfill_cursor = None
        if self._pin is not None and self._history is not None:
            self._history.store.unpin(self._pin)
        self._pin = None

    async def _next_backfill(self) -> Event | None:
        while not self._backfill and self._backfill_cursor is not None:
            page = await self._history.page(
                self.predicate,
                limit=self._queue_size,
                cursor=self._backfill_cursor,
                upto=self._live_floor,
            )
            if self._closed:
                return None
            self._backfill.extend(page.events)
            if page.next_cursor is None:
                self._release_backfill()
            else:
                self._backfill_cursor = page.next_cursor
                self._history.store.repin(self._pin, page.next_cursor + 1)

        return self._backfill.popleft() if self._backfill else None

    def get_nowait(self) -> FeedItem | None:
        """Next queued live item, or None when nothing is ready.

        Backfill is not served here; use ``get()`` for backfilled
        subscriptions.
        """
        if self._closed:
            raise SubscriptionClosed(f"Subscription {self.id} is closed")
        if self._pending_dropped:
            marker = Dropped(self._pending_dropped)
            self._pending_dropped = 0
            return marker
        if self._queue:
            event = self._queue.popleft()
            self._cursor = event.seq
            return event
        return None

    async def get(self, timeout: float | None = None) -> FeedItem:
        """Wait for the next event or Dropped marker.

        Raises:
            SubscriptionClosed: The subscription was removed.
            asyncio.TimeoutError: Nothing arrived within ``timeout`` seconds.
        """
        if self._closed:
            raise SubscriptionClosed(f"Subscription {self.id} is closed")

        if self._backfill_cursor is not None or self._backfill:
            if timeout is None:
                event = await self._next_backfill()
            else:
                event = await asyncio.wait_for(self._next_backfill(), timeout)
            if event is not None:
                self._cursor = event.seq
                return event

        while True:
            item = self.get_nowait()
            if item is not None:
                return item
            self._wakeup.clear()
            if timeout is None:
                await self._wakeup.wait()
            else:
                await asyncio.wait_for(self._wakeup.wait(), timeout)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> FeedItem:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None


class ILiveFeedDispatcher(Protocol):
    """Fan-out of newly appended events to live subscribers."""

    def subscribe(
        self, predicate: Predicate | None = None, since: int | None = None
    ) -> Subscription:
        """Register a listener."""
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a listener without waiting for in-flight delivery."""
        ...

    def publish(self, event: Event) -> None:
        """Offer a persisted event to every subscriber."""
        ...


class LiveFeedDispatcher:
    """In-memory fan-out with per-subscriber bounded queues.

    ``publish`` is registered as an event store listener: it runs right
    after commit, only filters and enqueues, and never waits on a consumer.
    """

    def __init__(
        self,
        store: EventStore,
        history: QueryEngine | None = None,
        queue_size: int = 1000,
    ):
        self._store = store
        self._history = history
        self._queue_size = queue_size
        self._subscribers: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        predicate: Predicate | None = None,
        since: int | None = None,
        queue_size: int | None = None,
    ) -> Subscription:
        """Register a listener.

        Args:
            predicate: Only matching events are delivered.
            since: Backfill stored events with seq > since before live ones.
                   Without it only events appended after this call arrive.
            queue_size: Overrides the dispatcher's per-subscriber bound.
        """
        subscription = Subscription(
            sub_id=next(self._ids),
            predicate=predicate or MATCH_ALL,
            queue_size=queue_size or self._queue_size,
            live_floor=self._store.head,
            history=self._history,
            since=since,
        )
        self._subscribers[subscription.id] = subscription
        logger.info(
            "Subscriber added",
            extra={
                "context": {
                    "subscription": subscription.id,
                    "floor": subscription.cursor,
                    "backfill": since is not None,
                }
            },
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a listener without waiting for in-flight delivery."""
        if self._subscribers.pop(subscription.id, None) is None:
            raise SubscriptionClosed(f"Subscription {subscription.id} is closed")
        subscription._close()
        logger.info(
            "Subscriber removed",
            extra={
                "context": {
                    "subscription": subscription.id,
                    "dropped_total": subscription.dropped_total,
                }
            },
        )

    def publish(self, event: Event) -> None:
        """Offer a persisted event to every subscriber."""
        for subscription in list(self._subscribers.values()):
            subscription._offer(event)

    def close(self) -> None:
        """Remove every subscription."""
        for subscription in list(self._subscribers.values()):
            self.unsubscribe(subscription)
