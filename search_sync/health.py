"""Health check and metrics endpoints for monitoring service status."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import settings
from .logging_setup import get_logger


log = get_logger(__name__)


def create_health_api(service: Any) -> FastAPI:
    """Build the FastAPI app exposing /health, /ready and /metrics.

    ``service`` must provide ``running``, ``nats.connected`` and
    ``health_status()``.
    """
    app = FastAPI(
        title="Search Sync Health",
        description="Health check and metrics for the search index sync service",
        version="1.0.0",
    )

    @app.get("/health")
    async def health_check():
        """Liveness: the process is up and has not been asked to stop."""
        healthy = bool(service.running)
        return JSONResponse(
            content={
                "status": "healthy" if healthy else "unhealthy",
                "service": settings.service_name,
            },
            status_code=200 if healthy else 503,
        )

    @app.get("/ready")
    async def readiness_check():
        """Readiness: connected to NATS with every subject subscribed."""
        try:
            status: Dict[str, Any] = service.health_status()
            ready = status["status"] == "ready"
            return JSONResponse(content=status, status_code=200 if ready else 503)
        except Exception as e:
            log.error("readiness_check_failed", error=str(e))
            return JSONResponse(
                content={
                    "status": "not_ready",
                    "error": str(e),
                    "service": settings.service_name,
                },
                status_code=503,
            )

    @app.get("/metrics")
    async def metrics():
        """Prometheus exposition of the process registry."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
