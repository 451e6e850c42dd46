"""Remote viewer: HTTP client for a running Pulse Store API."""

import base64
import json
from typing import Any, AsyncIterator, Mapping, Protocol

import httpx

from ..logging_config import get_logger
from ..models import Dropped, Event

logger = get_logger(__name__, component="remote")


class IRemoteViewer(Protocol):
    """Read-only consumer of a remote store, plus event submission."""

    async def fetch(self, cursor: int = 0, limit: int = 100, **filters: Any) -> tuple[list[Event], int | None]:
        """Fetch one page of events."""
        ...

    def tail(self, since: int | None = None, **filters: Any) -> AsyncIterator[Event | Dropped]:
        """Follow the live stream."""
        ...


def _filter_params(filters: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Flatten filters into query params; list values repeat the key."""
    params = []
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            params.extend((key, str(v)) for v in value)
        else:
            params.append((key, str(value)))
    return params


class RemoteViewer:
    """Client for the Pulse Store HTTP API.

    Filters are passed as keyword arguments named like the API query
    parameters: ``min_level``, ``level``, ``label``, ``session``, ``since``,
    ``until``, ``text`` and ``meta``.
    """

    def __init__(
        self,
        api_url: str = "http://localhost:8000",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self._api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the HTTP client if this viewer created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteViewer":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _url(self, path: str) -> str:
        return f"{self._api_url}{path}"

    async def fetch(
        self, cursor: int = 0, limit: int = 100, **filters: Any
    ) -> tuple[list[Event], int | None]:
        """Fetch one page of events; returns (events, next_cursor)."""
        params = _filter_params(filters) + [("cursor", str(cursor)), ("limit", str(limit))]
        response = await self._client.get(self._url("/api/events"), params=params)
        response.raise_for_status()
        data = response.json()
        return [Event.from_dict(e) for e in data["events"]], data["next_cursor"]

    async def fetch_all(self, page_size: int = 500, **filters: Any) -> AsyncIterator[Event]:
        """Iterate every matching event page by page."""
        cursor: int | None = 0
        while cursor is not None:
            events, cursor = await self.fetch(cursor=cursor, limit=page_size, **filters)
            for event in events:
                yield event

    async def get_event(self, seq: int) -> Event | None:
        """Fetch one event; None when absent."""
        response = await self._client.get(self._url(f"/api/events/{seq}"))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Event.from_dict(response.json())

    async def get_payload(self, ref: str) -> bytes | None:
        """Fetch payload bytes; None when absent."""
        response = await self._client.get(self._url(f"/api/payloads/{ref}"))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.content

    async def append(
        self,
        message: str,
        level: str = "info",
        label: str = "default",
        metadata: Mapping[str, Any] | None = None,
        payload: bytes | None = None,
    ) -> int:
        """Submit an event to the remote store; returns its seq."""
        body: dict[str, Any] = {
            "message": message,
            "level": level,
            "label": label,
            "metadata": dict(metadata) if metadata else None,
        }
        if payload is not None:
            body["payload_base64"] = base64.b64encode(payload).decode("ascii")

        response = await self._client.post(self._url("/api/events"), json=body)
        response.raise_for_status()
        return response.json()["seq"]

    async def stats(self) -> dict[str, Any]:
        """Fetch store statistics."""
        response = await self._client.get(self._url("/api/stats"))
        response.raise_for_status()
        return response.json()

    async def labels(self) -> list[str]:
        """Fetch distinct labels."""
        response = await self._client.get(self._url("/api/labels"))
        response.raise_for_status()
        return response.json()

    async def tail(
        self,
        since: int | None = None,
        max_events: int | None = None,
        **filters: Any,
    ) -> AsyncIterator[Event | Dropped]:
        """Follow the live stream, yielding Events and Dropped markers."""
        params = _filter_params(filters)
        if since is not None:
            params.append(("since", str(since)))
        if max_events is not None:
            params.append(("max_events", str(max_events)))

        async with self._client.stream(
            "GET", self._url("/api/events/stream"), params=params, timeout=None
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.strip():
                    continue  # keep-alive
                record = json.loads(line)
                if "dropped" in record:
                    logger.info("Remote stream dropped %s events", record["dropped"])
                    yield Dropped(record["dropped"])
                else:
                    yield Event.from_dict(record)
