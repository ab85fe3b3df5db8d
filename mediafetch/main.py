from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from mediafetch.api.router import router
from mediafetch.core.config import Settings
from mediafetch.core.container import Container


def _configure_logging(level_name: str) -> None:
    """Configure the ``mediafetch`` logger namespace.

    ``logging.basicConfig`` does nothing once uvicorn has installed root
    handlers, so the package logger gets its own handler and stops
    propagating.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    app_log = logging.getLogger("mediafetch")
    app_log.setLevel(level)
    if not app_log.handlers:
        app_log.addHandler(handler)
    app_log.propagate = False


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    _configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────
        app.state.container = await Container.build(settings)
        yield
        # ── Shutdown ─────────────────────────────────────────────────────
        await app.state.container.close()

    app = FastAPI(
        title="Mediafetch",
        description="Resolves social media post URLs into downloadable media formats.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
