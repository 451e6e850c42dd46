"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..handle import StoreHandle
from .routes import control, events


def create_fastapi_app(
    handle: StoreHandle | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        handle: Store to serve. Built from the environment when None. The
                app opens and closes it with its lifespan unless the handle
                was already open when passed in.
        cors_origins: Origins allowed to call the API from a browser viewer.
    """
    if handle is None:
        handle = StoreHandle()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage store lifespan."""
        owned = not handle.is_open
        if owned:
            await handle.open()
        yield
        if owned:
            await handle.close()

    fastapi_app = FastAPI(
        title="Pulse Store API",
        description="Query, tail and export structured log events",
        version="0.1.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["http://localhost:5173", "http://localhost:5174"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    fastapi_app.include_router(events.create_events_router(handle))
    fastapi_app.include_router(control.create_control_router(handle))
    fastapi_app.state.handle = handle

    return fastapi_app
