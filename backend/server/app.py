"""
FastAPI app factory for the pipeline status server.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Attach the running Pipeline to app.state
- Register routes
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from server.routes import register_routes

if TYPE_CHECKING:
    from orchestrator.runtime import Pipeline


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The app only reads pipeline state; it never drives the pipeline.
    A None pipeline serves /health and reports not-ready.
    """
    app = FastAPI(title="Live Dubbing Pipeline")

    app.state.pipeline = pipeline

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
