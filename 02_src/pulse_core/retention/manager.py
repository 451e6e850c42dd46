"""Retention manager: bounds the stored log by count and age."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Protocol

from ..logging_config import get_logger
from ..models import Event, to_micros
from ..storage import EventStore

logger = get_logger(__name__, component="retention")


class IRetentionManager(Protocol):
    """Evicting oldest events beyond the configured bounds."""

    async def sweep(self) -> int:
        """Run one eviction pass; return the number of evicted events."""
        ...

    async def start(self) -> None:
        """Start the background sweep task."""
        ...

    async def stop(self) -> None:
        """Stop the background sweep task."""
        ...


class RetentionManager:
    """Evicts the oldest events beyond ``max_events`` or older than ``max_age``.

    Only prefixes of the sequence are removed, so a newer event is never
    evicted while an older one stays. Readers holding a snapshot pin bound
    how far a pass may go; whatever they protect is picked up by a later
    pass.
    """

    def __init__(
        self,
        store: EventStore,
        max_events: int | None = None,
        max_age: timedelta | None = None,
        interval: float = 60.0,
        sweep_on_append: bool = False,
    ):
        self._store = store
        self.max_events = max_events
        self.max_age = max_age
        self._interval = interval
        self._sweep_on_append = sweep_on_append
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def _count_ceiling(self) -> int:
        if self.max_events is None:
            return 0
        excess = self._store.count - self.max_events
        if excess <= 0:
            return 0
        seq = await self._store.nth_seq(excess - 1)
        return seq or 0

    async def _age_ceiling(self, now: datetime) -> int:
        if self.max_age is None:
            return 0
        cutoff = to_micros(now - self.max_age)
        first_young = await self._store.first_seq_since(cutoff)
        if first_young is None:
            return self._store.head
        return first_young - 1

    async def sweep(self, now: datetime | None = None) -> int:
        """Run one eviction pass; return the number of evicted events."""
        if now is None:
            now = datetime.now(timezone.utc)

        ceiling = max(await self._count_ceiling(), await self._age_ceiling(now))
        if ceiling <= 0:
            return 0

        evicted = await self._store.evict_through(ceiling)
        if evicted:
            logger.info(
                "Retention pass evicted events",
                extra={
                    "context": {
                        "evicted": evicted,
                        "ceiling": ceiling,
                        "remaining": self._store.count,
                    }
                },
            )
        return evicted

    def notify_append(self, event: Event) -> None:
        """Store listener: wake the background task after an append."""
        if self._sweep_on_append and self._running:
            self._wake.set()

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            return
        if self.max_events is None and self.max_age is None:
            logger.info("Retention disabled: no bounds configured")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Retention started",
            extra={
                "context": {
                    "max_events": self.max_events,
                    "max_age_seconds": (
                        self.max_age.total_seconds() if self.max_age else None
                    ),
                    "interval": self._interval,
                    "sweep_on_append": self._sweep_on_append,
                }
            },
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._wake.wait(), self._interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Retention pass failed")
