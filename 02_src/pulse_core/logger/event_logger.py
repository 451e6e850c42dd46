"""Producer facade for appending log and network events."""

from datetime import datetime
from typing import Any, Mapping, Protocol

from ..models import Event, Level
from ..storage import EventStore

NETWORK_LABEL = "network"


class IEventLogger(Protocol):
    """Creating Events. Two channels: level helpers + network requests."""

    async def log(
        self,
        level: Level | str,
        message: str,
        label: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        payload: bytes | None = None,
    ) -> int:
        """Create an Event and append it to the store."""
        ...

    async def log_request(
        self,
        method: str,
        url: str,
        status_code: int | None = None,
        duration: float | None = None,
        error: str | None = None,
        response_body: bytes | None = None,
    ) -> int:
        """Record one network request."""
        ...


class EventLogger:
    """Builds Events for a logging session and appends them to the store."""

    def __init__(
        self,
        store: EventStore,
        session: str | None = None,
        default_label: str = "default",
    ):
        self._store = store
        self._session = session
        self._default_label = default_label

    @property
    def session(self) -> str | None:
        return self._session

    async def log(
        self,
        level: Level | str,
        message: str,
        label: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        payload: bytes | None = None,
        timestamp: datetime | None = None,
    ) -> int:
        """Create an Event and append it to the store; return its seq."""
        event = Event.create(
            level=level,
            label=label or self._default_label,
            message=message,
            metadata=metadata,
            timestamp=timestamp,
            session=self._session,
        )
        return await self._store.append(event, payload=payload)

    async def trace(self, message: str, label: str | None = None, **metadata: Any) -> int:
        return await self.log(Level.TRACE, message, label, metadata)

    async def debug(self, message: str, label: str | None = None, **metadata: Any) -> int:
        return await self.log(Level.DEBUG, message, label, metadata)

    async def info(self, message: str, label: str | None = None, **metadata: Any) -> int:
        return await self.log(Level.INFO, message, label, metadata)

    async def warn(self, message: str, label: str | None = None, **metadata: Any) -> int:
        return await self.log(Level.WARN, message, label, metadata)

    async def error(self, message: str, label: str | None = None, **metadata: Any) -> int:
        return await self.log(Level.ERROR, message, label, metadata)

    async def critical(self, message: str, label: str | None = None, **metadata: Any) -> int:
        return await self.log(Level.CRITICAL, message, label, metadata)

    async def log_request(
        self,
        method: str,
        url: str,
        status_code: int | None = None,
        duration: float | None = None,
        error: str | None = None,
        response_body: bytes | None = None,
    ) -> int:
        """Record one network request under the ``network`` label.

        Failed requests (transport error or HTTP status >= 400) are logged
        at error level, the rest at info. The response body becomes the
        event payload.
        """
        method = method.upper()
        failed = error is not None or (status_code is not None and status_code >= 400)

        metadata: dict[str, Any] = {"method": method, "url": url}
        if status_code is not None:
            metadata["status_code"] = status_code
        if duration is not None:
            metadata["duration_ms"] = round(duration * 1000, 3)
        if error is not None:
            metadata["error"] = error
        if response_body is not None:
            metadata["response_size"] = len(response_body)

        summary = f"{method} {url}"
        if status_code is not None:
            summary += f" {status_code}"
        elif error is not None:
            summary += f" failed: {error}"

        return await self.log(
            Level.ERROR if failed else Level.INFO,
            summary,
            label=NETWORK_LABEL,
            metadata=metadata,
            payload=response_body,
        )
