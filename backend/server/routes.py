"""
Route registration for the status API.

Responsibilities:
- Define HTTP endpoints
- Pull the pipeline from app.state
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        """Liveness for load balancers; independent of pipeline state."""
        return {"status": "ok"}

    @app.get("/ready")
    async def ready() -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        pipeline = app.state.pipeline
        is_ready = (
            pipeline is not None
            and pipeline.running
            and await pipeline.ready()
        )
        return JSONResponse(
            status_code=200 if is_ready else 503,
            content={"ready": is_ready},
        )

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        pipeline = app.state.pipeline
        if pipeline is None:
            return {"running": False}
        return pipeline.status()
