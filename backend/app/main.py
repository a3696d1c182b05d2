# backend/app/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.api.reviews import router as reviews_router
from backend.app.api.run import router as run_router
from backend.app.status import run_status_store
from inbox_responder.app.run import build_components
from inbox_responder.config.logging_setup import configure_logging
from inbox_responder.config.settings import load_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(settings.logs_dir)
    components = build_components(settings, progress_cb=run_status_store.progress_cb)
    app.state.components = components
    # The API process is the single writer: it hosts the only scheduler.
    task = asyncio.create_task(components.scheduler.run_forever())
    try:
        yield
    finally:
        components.scheduler.stop()
        await task


def create_app(*, start_scheduler: bool = True) -> FastAPI:
    app = FastAPI(title="inbox-responder API", lifespan=lifespan if start_scheduler else None)
    app.include_router(run_router, prefix="/api")
    app.include_router(reviews_router, prefix="/api")
    return app


app = create_app()
