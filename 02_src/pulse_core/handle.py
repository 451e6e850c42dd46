"""Store handle: bootstrap and lifecycle of the store components."""

import uuid
from dataclasses import replace
from pathlib import Path
from typing import Protocol

from .config import StoreConfig
from .errors import StorageError
from .feed import LiveFeedDispatcher
from .logger import EventLogger
from .logging_config import get_logger
from .query import QueryEngine
from .retention import RetentionManager
from .storage import EventStore

logger = get_logger(__name__, component="handle")


class IStoreHandle(Protocol):
    """Bootstrap and lifecycle."""

    async def open(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def close(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Remove every stored event."""
        ...


class StoreHandle:
    """The open store, passed explicitly to whoever needs it.

    Usage::

        async with StoreHandle(StoreConfig(db_path=":memory:")) as handle:
            await handle.logger.info("started")
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        db_path: str | Path | None = None,
    ):
        if config is None:
            config = StoreConfig.from_env(db_path)
        elif db_path is not None:
            config = replace(config, db_path=db_path)
        self._config = config

        # Components (will be initialized in open())
        self._store: EventStore | None = None
        self._query_engine: QueryEngine | None = None
        self._dispatcher: LiveFeedDispatcher | None = None
        self._retention: RetentionManager | None = None
        self._logger: EventLogger | None = None
        self._session: str | None = None

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def is_open(self) -> bool:
        return self._store is not None

    async def open(self) -> None:
        """Initialize components in dependency order."""
        if self.is_open:
            return
        config = self._config
        logger.info("Opening store handle")

        # 1. Store (no dependencies)
        store = EventStore(
            config.db_path,
            max_events=config.max_events,
            strict_capacity=config.strict_capacity,
        )
        await store.init()
        self._store = store

        # 2. Query engine (reads the store)
        self._query_engine = QueryEngine(store, batch_size=config.query_batch_size)

        # 3. Dispatcher (store listener, backfills through the query engine)
        self._dispatcher = LiveFeedDispatcher(
            store,
            history=self._query_engine,
            queue_size=config.subscriber_queue_size,
        )
        store.add_listener(self._dispatcher.publish)

        # 4. Retention (store listener when sweeping on append)
        self._retention = RetentionManager(
            store,
            max_events=config.max_events,
            max_age=config.max_age,
            interval=config.sweep_interval,
            sweep_on_append=config.sweep_on_append,
        )
        store.add_listener(self._retention.notify_append)
        await self._retention.start()

        # 5. Producer facade for this session
        self._session = str(uuid.uuid4())
        self._logger = EventLogger(store, session=self._session)

        logger.info(
            "Store handle open",
            extra={"context": {"session": self._session, "head": store.head}},
        )

    async def close(self) -> None:
        """Shutdown in reverse order."""
        if self._retention:
            await self._retention.stop()
        if self._dispatcher:
            self._dispatcher.close()
        if self._store:
            await self._store.close()

        self._store = None
        self._query_engine = None
        self._dispatcher = None
        self._retention = None
        self._logger = None
        logger.info("Store handle closed")

    async def reset(self) -> None:
        """Remove every stored event; subscriptions stay attached."""
        await self.store.clear()
        logger.info("Store cleared")

    async def __aenter__(self) -> "StoreHandle":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _require(self, component):
        if component is None:
            raise StorageError("Store handle not open")
        return component

    @property
    def store(self) -> EventStore:
        """Get event store instance."""
        return self._require(self._store)

    @property
    def query_engine(self) -> QueryEngine:
        """Get query engine instance."""
        return self._require(self._query_engine)

    @property
    def dispatcher(self) -> LiveFeedDispatcher:
        """Get live feed dispatcher instance."""
        return self._require(self._dispatcher)

    @property
    def retention(self) -> RetentionManager:
        """Get retention manager instance."""
        return self._require(self._retention)

    @property
    def logger(self) -> EventLogger:
        """Get the session's event logger."""
        return self._require(self._logger)

    @property
    def session(self) -> str:
        """Id of the current logging session."""
        return self._require(self._session)
