"""
FastAPI app for requests addressed to the proxy itself (no route subdomain).
"""

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse

from devproxy import __version__
from devproxy.router.pages import DASHBOARD_HTML

if TYPE_CHECKING:
    from devproxy.engine import ProxyEngine


def create_control_app(engine: "ProxyEngine") -> FastAPI:
    """
    Create the dashboard / routes API app for one engine.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(title="devproxy", docs_url=None, redoc_url=None, openapi_url=None)
    start_time = time.time()

    @app.get("/")
    async def dashboard():
        return HTMLResponse(DASHBOARD_HTML)

    @app.get("/api/routes")
    async def routes():
        return JSONResponse([route.to_dict() for route in engine.get_routes()])

    @app.get("/api/state")
    async def state():
        return JSONResponse(engine.get_state().to_dict())

    @app.get("/health")
    async def health():
        """Lightweight health endpoint for liveness checks."""
        return JSONResponse(
            {
                "status": "ok",
                "version": __version__,
                "routes_count": len(engine.get_routes()),
                "active_tunnels": engine.active_tunnels,
                "uptime_seconds": int(time.time() - start_time),
            }
        )

    return app
