"""Main entry point for the Pulse Store API server."""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from pulse_core import StoreConfig, StoreHandle
from pulse_core.api import create_fastapi_app
from pulse_core.logging_config import setup_logging


def main():
    """Run the API server."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging()

    # Get configuration from environment
    api_host = os.getenv("API_HOST", "localhost")
    api_port = int(os.getenv("API_PORT", "8000"))
    cors_origins = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "").split(",")
        if origin.strip()
    ]

    handle = StoreHandle(StoreConfig.from_env())
    app = create_fastapi_app(handle, cors_origins=cors_origins or None)

    uvicorn.run(
        app,
        host=api_host,
        port=api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
