"""Bridge from stdlib ``logging`` into the event store."""

import asyncio
import concurrent.futures
import logging
import threading
from datetime import datetime, timezone

from ..models import Level
from .event_logger import EventLogger

# The store's own diagnostics must not feed back into the store.
_IGNORED_PREFIXES = ("pulse_core", "aiosqlite")


def level_for_record(levelno: int) -> Level:
    """Map a stdlib logging level number to an event level."""
    if levelno < logging.DEBUG:
        return Level.TRACE
    if levelno < logging.INFO:
        return Level.DEBUG
    if levelno < logging.WARNING:
        return Level.INFO
    if levelno < logging.ERROR:
        return Level.WARN
    if levelno < logging.CRITICAL:
        return Level.ERROR
    return Level.CRITICAL


class StoreLogHandler(logging.Handler):
    """Logging handler that appends every record as an Event.

    The label is the logger name. Records may come from any thread; they
    are handed to the event loop the store runs on.
    """

    def __init__(
        self,
        event_logger: EventLogger,
        loop: asyncio.AbstractEventLoop | None = None,
        level: int = logging.NOTSET,
    ):
        super().__init__(level)
        self._event_logger = event_logger
        self._loop = loop or asyncio.get_running_loop()
        self._pending: set[asyncio.Future | concurrent.futures.Future] = set()
        self._pending_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(_IGNORED_PREFIXES):
            return
        try:
            metadata = {
                "logger": record.name,
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
                "thread": record.threadName,
            }
            if record.exc_info:
                metadata["exception"] = self._format_exception(record.exc_info)

            coro = self._event_logger.log(
                level_for_record(record.levelno),
                record.getMessage(),
                label=record.name,
                metadata=metadata,
                timestamp=datetime.fromtimestamp(record.created, timezone.utc),
            )
            self._schedule(coro)
        except Exception:
            self.handleError(record)

    def _format_exception(self, exc_info) -> str:
        return (self.formatter or logging.Formatter()).formatException(exc_info)

    def _schedule(self, coro) -> None:
        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False

        if on_loop:
            future = self._loop.create_task(coro)
        else:
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._done)

    def _done(self, future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            # pulse_core loggers are skipped by emit(), so this cannot recurse.
            logging.getLogger("pulse_core.logger").error(
                "Failed to store log record: %s", future.exception()
            )

    async def drain(self) -> None:
        """Wait until every scheduled record has been appended."""
        while True:
            with self._pending_lock:
                pending = list(self._pending)
            if not pending:
                return
            await asyncio.gather(
                *(
                    f if isinstance(f, asyncio.Future) else asyncio.wrap_future(f)
                    for f in pending
                ),
                return_exceptions=True,
            )
