"""
Hospital Wait Monitor - Health Endpoint

FastAPI application exposing health probes and Prometheus metrics, plus a
small wrapper that serves it with uvicorn inside the application's event
loop.

Routes:
    GET /health         Full report (200 healthy/degraded, 503 unhealthy)
    GET /health/ready   Readiness probe
    GET /health/live    Liveness probe
    GET /health/simple  One-line status
    GET /metrics        Prometheus text exposition
"""

import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from health.checker import HealthChecker
from observability.provider import Observability


logger = logging.getLogger(__name__)


# =============================================================================
# Application Factory
# =============================================================================

def create_health_app(
    checker: HealthChecker,
    observability: Optional[Observability] = None,
    debug: bool = False,
) -> FastAPI:
    """
    Create the health API.

    Args:
        checker: Component health aggregator
        observability: Source of the /metrics registry
        debug: Expose OpenAPI docs

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Hospital Wait Monitor Health",
        description="Health probes and metrics for the wait time scraper",
        version=checker.version,
        docs_url="/docs" if debug else None,
        redoc_url=None,
    )
    app.state.checker = checker
    app.state.observability = observability

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        report = await request.app.state.checker.perform_health_check()
        code = status.HTTP_200_OK if report.is_serving else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(report.to_dict(), status_code=code)

    @app.get("/health/ready")
    async def ready(request: Request) -> JSONResponse:
        is_ready, checks = await request.app.state.checker.check_readiness()
        code = status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse({"ready": is_ready, "checks": checks}, status_code=code)

    @app.get("/health/live")
    async def live(request: Request) -> JSONResponse:
        alive, details = request.app.state.checker.check_liveness()
        code = status.HTTP_200_OK if alive else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse({"alive": alive, **details}, status_code=code)

    @app.get("/health/simple")
    async def simple(request: Request) -> JSONResponse:
        ok, message = await request.app.state.checker.simple_health()
        code = status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse({"status": "ok" if ok else "error", "message": message}, status_code=code)

    @app.get("/metrics")
    async def metrics(request: Request) -> Response:
        provider = request.app.state.observability
        if provider is None:
            return Response("metrics not configured\n", status_code=status.HTTP_404_NOT_FOUND)
        return Response(provider.metrics.render(), media_type=provider.metrics.CONTENT_TYPE)

    return app


# =============================================================================
# Server
# =============================================================================

class HealthServer:
    """Runs the health app with uvicorn as a task on the current loop."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 8080):
        self.host = host
        self.port = port
        # log_config=None keeps uvicorn on the application's logging setup
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_config=None, access_log=False)
        )
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._server.serve(), name="health-server")
        logger.info("Health endpoint started", extra={"host": self.host, "port": self.port})

    async def stop(self, timeout_s: float = 5.0) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Health endpoint did not stop in time, cancelling")
            self._task.cancel()
        self._task = None
        logger.info("Health endpoint stopped")


__all__ = [
    "create_health_app",
    "HealthServer",
]
