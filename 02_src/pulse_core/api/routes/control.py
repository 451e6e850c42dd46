"""Control API routes."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...handle import StoreHandle


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class SweepResponse(BaseModel):
    """Response model for a retention pass."""

    evicted: int
    remaining: int


class HandleStatusResponse(BaseModel):
    """Response model for handle status."""

    session: str
    head: int
    count: int
    subscribers: int
    retention_running: bool
    max_events: int | None = None
    max_age_seconds: float | None = None


def create_control_router(handle: StoreHandle) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.get("/status", response_model=HandleStatusResponse)
    async def get_status() -> dict:
        """Report handle and retention state."""
        retention = handle.retention
        return {
            "session": handle.session,
            "head": handle.store.head,
            "count": handle.store.count,
            "subscribers": handle.dispatcher.subscriber_count,
            "retention_running": retention.running,
            "max_events": retention.max_events,
            "max_age_seconds": (
                retention.max_age.total_seconds() if retention.max_age else None
            ),
        }

    @router.post("/sweep", response_model=SweepResponse)
    async def run_sweep() -> dict:
        """Run a retention pass now."""
        try:
            evicted = await handle.retention.sweep()
            return {"evicted": evicted, "remaining": handle.store.count}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/reset", response_model=StatusResponse)
    async def reset_store() -> dict:
        """Remove every stored event."""
        try:
            await handle.reset()
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
