"""
Health endpoints for the agent pod.

/healthz is a plain liveness probe. /health reports heartbeat state and
returns 503 once the control-plane has not acknowledged a heartbeat for
several intervals, so the orchestrator can surface a disconnected agent.
"""

import logging
import time
from threading import Thread

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tendril import __version__
from tendril.logging_config import get_logging_config
from tendril.modules.agent.poller import Poller

logger = logging.getLogger("tendril.health")

# Heartbeat intervals without an acknowledged heartbeat before reporting unhealthy
STALE_HEARTBEATS = 3


def create_health_app(poller: Poller) -> FastAPI:
    """Build the health application bound to a poller."""
    app = FastAPI(title="Tendril Agent", version=__version__, docs_url=None, redoc_url=None)

    @app.get("/healthz")
    async def healthz():
        """Minimal liveness check."""
        return {"status": "ok"}

    @app.get("/health")
    async def health_check():
        """
        Heartbeat-aware health check.

        Returns:
            200: Heartbeats are being acknowledged
            503: No heartbeat acknowledged recently, or agent stopping
        """
        state = poller.status()
        last = state["last_heartbeat_at"]
        max_age = poller.settings.heartbeat_interval * STALE_HEARTBEATS

        if state["stopped"]:
            status = "stopping"
        elif last is None:
            status = "starting"
        elif time.time() - last > max_age:
            status = "unhealthy"
        else:
            status = "healthy"

        content = {"status": status, "version": __version__, **state}
        if status == "healthy":
            return content
        return JSONResponse(status_code=503, content=content)

    return app


def start_health_server(poller: Poller, port: int, log_level: str = "INFO") -> uvicorn.Server:
    """Serve the health app from a daemon thread."""
    config = uvicorn.Config(
        create_health_app(poller),
        host="0.0.0.0",
        port=port,
        log_level=log_level.lower(),
        log_config=get_logging_config(log_level),
    )
    server = uvicorn.Server(config)

    thread = Thread(target=server.run, name="health-server", daemon=True)
    thread.start()
    logger.info(f"Health server listening on port {port}")
    return server
