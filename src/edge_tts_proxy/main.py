"""
FastAPI Application Entry Point.

This module creates and configures the FastAPI application instance for
edge-tts-proxy. It sets up routing, logging, and the shutdown hook that
closes the upstream HTTP client.

The application exposes two routers:
    - OpenAI-compatible API: /v1/audio/speech, /v1/models
    - Operational: /health, /metrics

Usage:
    # Run with uvicorn
    uvicorn edge_tts_proxy.main:app --host 0.0.0.0 --port 8000

    # Or through the CLI
    edge-tts-proxy --serve --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from edge_tts_proxy import __version__
from edge_tts_proxy.api.dependencies import shutdown_service
from edge_tts_proxy.api.openai_compat import router as openai_router
from edge_tts_proxy.api.routes import router
from edge_tts_proxy.core.logging import configure_logging, get_logger, info

_LOG = get_logger("edge-tts-proxy.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "startup", version=__version__)
    yield
    await shutdown_service()
    info(_LOG, "shutdown")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function:
        1. Configures structured logging (EDGE_TTS_LOG_LEVEL etc.)
        2. Creates a FastAPI instance with a lifespan that closes the
           service's HTTP client on shutdown
        3. Registers the OpenAI-compatible and operational routers

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    configure_logging()

    app = FastAPI(title="edge-tts-proxy", version=__version__, lifespan=lifespan)

    app.include_router(openai_router)    # OpenAI: /v1/audio/speech, /v1/models
    app.include_router(router)           # Ops: /health, /metrics

    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
