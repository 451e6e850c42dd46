"""Event query, append and live tail API routes."""

import asyncio
import base64
import binascii
import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ...errors import CapacityExceeded, InvalidPredicate, SubscriptionClosed
from ...export import iter_ndjson
from ...handle import StoreHandle
from ...models import Dropped, Event
from ...query import Predicate


class EventResponse(BaseModel):
    """Response model for a stored event."""

    seq: int
    timestamp: datetime
    level: str
    label: str
    message: str
    metadata: list[list[str]]
    payload_ref: str | None = None
    session: str | None = None


class EventPageResponse(BaseModel):
    """Response model for a page of events."""

    events: list[EventResponse]
    next_cursor: int | None = None


class AppendRequest(BaseModel):
    """Request model for appending an event."""

    message: str
    level: str = "info"
    label: str = "default"
    metadata: dict[str, Any] | list[tuple[str, Any]] | None = None
    timestamp: datetime | None = None
    payload_base64: str | None = None
    strict: bool | None = None


class AppendResponse(BaseModel):
    """Response model for an appended event."""

    seq: int


class StatsResponse(BaseModel):
    """Response model for store statistics."""

    count: int
    first_seq: int | None = None
    last_seq: int | None = None
    head: int
    levels: dict[str, int]
    blob_count: int
    blob_bytes: int
    subscribers: int = 0


def predicate_params(
    min_level: str | None = Query(None, description="Lowest level to include"),
    level: list[str] | None = Query(None, description="Exact levels to include"),
    label: list[str] | None = Query(None, description="Labels to include"),
    session: list[str] | None = Query(None, description="Sessions to include"),
    since: str | None = Query(None, description="ISO timestamp, inclusive"),
    until: str | None = Query(None, description="ISO timestamp, inclusive"),
    text: str | None = Query(None, description="Case-insensitive substring"),
    meta: list[str] | None = Query(None, description="key:value metadata match"),
) -> Predicate:
    """Build a Predicate from query parameters."""
    try:
        return Predicate.parse(
            min_level=min_level,
            levels=level,
            labels=label,
            sessions=session,
            since=since,
            until=until,
            text=text,
            metadata=meta,
        )
    except InvalidPredicate as e:
        raise HTTPException(status_code=400, detail=str(e))


def _ndjson(record: dict) -> str:
    return json.dumps(record, ensure_ascii=False) + "\n"


def create_events_router(handle: StoreHandle) -> APIRouter:
    """Create events router."""
    router = APIRouter(prefix="/api", tags=["events"])

    @router.get("/events", response_model=EventPageResponse)
    async def list_events(
        predicate: Predicate = Depends(predicate_params),
        cursor: int = Query(0, ge=0, description="Last seq already seen"),
        limit: int = Query(100, ge=1, le=1000),
    ) -> dict:
        """Get one page of events matching the filters."""
        page = await handle.query_engine.page(predicate, limit=limit, cursor=cursor)
        return {
            "events": [e.to_dict() for e in page.events],
            "next_cursor": page.next_cursor,
        }

    @router.post("/events", response_model=AppendResponse)
    async def append_event(request: AppendRequest) -> dict:
        """Append one event."""
        try:
            event = Event.create(
                level=request.level,
                label=request.label,
                message=request.message,
                metadata=request.metadata,
                timestamp=request.timestamp,
            )
            payload = (
                base64.b64decode(request.payload_base64, validate=True)
                if request.payload_base64
                else None
            )
        except (ValueError, binascii.Error) as e:
            raise HTTPException(status_code=400, detail=str(e))

        try:
            seq = await handle.store.append(event, payload=payload, strict=request.strict)
        except CapacityExceeded as e:
            raise HTTPException(status_code=507, detail=str(e))
        return {"seq": seq}

    @router.get("/events/stream")
    async def stream_events(
        request: Request,
        predicate: Predicate = Depends(predicate_params),
        since: int | None = Query(None, ge=0, description="Backfill after this seq"),
        max_events: int | None = Query(None, ge=1, description="End after N events"),
        heartbeat: float = Query(15.0, gt=0, description="Idle keep-alive seconds"),
    ) -> StreamingResponse:
        """Tail events live as NDJSON; overflow shows up as {"dropped": n}."""
        dispatcher = handle.dispatcher
        subscription = dispatcher.subscribe(predicate, since=since)

        async def lines():
            delivered = 0
            try:
                while max_events is None or delivered < max_events:
                    try:
                        item = await subscription.get(timeout=heartbeat)
                    except asyncio.TimeoutError:
                        if await request.is_disconnected():
                            break
                        yield "\n"
                        continue
                    except SubscriptionClosed:
                        break

                    if isinstance(item, Dropped):
                        yield _ndjson({"dropped": item.count})
                    else:
                        yield _ndjson(item.to_dict())
                        delivered += 1
            finally:
                if not subscription.closed:
                    dispatcher.unsubscribe(subscription)

        return StreamingResponse(lines(), media_type="application/x-ndjson")

    @router.get("/events/{seq}", response_model=EventResponse)
    async def get_event(seq: int) -> dict:
        """Get one event by sequence id."""
        event = await handle.store.get(seq)
        if event is None:
            raise HTTPException(status_code=404, detail=f"Event {seq} not found")
        return event.to_dict()

    @router.get("/payloads/{ref}")
    async def get_payload(ref: str) -> Response:
        """Get raw payload bytes."""
        data = await handle.store.get_payload(ref)
        if data is None:
            raise HTTPException(status_code=404, detail=f"Payload {ref} not found")
        return Response(content=data, media_type="application/octet-stream")

    @router.get("/labels", response_model=list[str])
    async def get_labels() -> list[str]:
        """Get distinct labels."""
        return await handle.store.labels()

    @router.get("/stats", response_model=StatsResponse)
    async def get_stats() -> dict:
        """Get store statistics."""
        stats = await handle.store.stats()
        stats["subscribers"] = handle.dispatcher.subscriber_count
        return stats

    @router.get("/export")
    async def export_events(
        predicate: Predicate = Depends(predicate_params),
        include_payloads: bool = Query(False),
    ) -> StreamingResponse:
        """Download matching events as NDJSON."""
        return StreamingResponse(
            iter_ndjson(handle.query_engine, predicate, include_payloads),
            media_type="application/x-ndjson",
            headers={"Content-Disposition": 'attachment; filename="pulse-export.ndjson"'},
        )

    return router
