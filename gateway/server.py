"""
Voice gateway HTTP server.

Public routes: /health, /status. Everything else requires the bearer credential
(see gateway.auth). The session reaper runs for the lifetime of the app.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request

from logging_setup import get_logger, Component
from voice_pipeline.config import get_config as get_voice_config
from voice_pipeline.errors import VoicePipelineError
from voice_pipeline.pipeline import VoicePipeline, build_pipeline
from .api import router as api_router, stream_router
from .config import GatewayConfig, get_config
from .errors import GatewayError, gateway_error_handler, pipeline_error_handler

SERVICE_NAME = "Tea Voice Gateway"
VERSION = "0.1.0"

logger = get_logger(Component.GATEWAY)


def create_app(
    pipeline: Optional[VoicePipeline] = None,
    config: Optional[GatewayConfig] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Without an explicit pipeline, the production pipeline is built from the
    environment when the app starts and closed when it stops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_pipeline = app.state.pipeline is None
        if owns_pipeline:
            app.state.pipeline = build_pipeline(get_voice_config())
        app.state.pipeline.start()

        gateway_config = app.state.gateway_config
        if gateway_config.uses_default_api_key:
            logger.warning("API_KEY not set; using the development default")
        logger.info("Gateway started", host=gateway_config.host, port=gateway_config.port, version=VERSION)
        try:
            yield
        finally:
            if owns_pipeline:
                await app.state.pipeline.aclose()
                app.state.pipeline = None
            else:
                await app.state.pipeline.reaper.stop()
            logger.info("Gateway stopped")

    app = FastAPI(title=SERVICE_NAME, version=VERSION, lifespan=lifespan)
    app.state.gateway_config = config or get_config()
    app.state.pipeline = pipeline

    app.add_exception_handler(VoicePipelineError, pipeline_error_handler)
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.include_router(api_router)
    app.include_router(stream_router)

    @app.get("/health")
    async def health():
        """Liveness check (public)."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        }

    @app.get("/status")
    async def status(request: Request):
        """Service status and endpoint listing (public)."""
        active_pipeline = request.app.state.pipeline
        return {
            "service": SERVICE_NAME,
            "status": "online",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
            "active_sessions": active_pipeline.store.active_count() if active_pipeline else 0,
            "endpoints": [
                "GET /health",
                "GET /status",
                "POST /api/v1/transcriptions",
                "WS /api/v1/transcribe/stream",
                "POST /voice-chat",
                "POST /api/v1/voice-sessions",
                "GET /api/v1/voice-sessions/{session_id}",
                "GET /api/v1/voice-sessions/{session_id}/events",
            ],
        }

    return app


app = create_app()
