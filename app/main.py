from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import router
from datastore.collections import ConnectionState, build_default_store
from logging_config import configure_logging
from services.ingestion import IngestionListener
from services.router import build_default_router
from services.scheduler import RollupScheduler, build_rollup_jobs
from services.transport import MqttTransport
from settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    store = build_default_router().store
    tasks: List[asyncio.Task[None]] = []
    application.state.mqtt = None

    if settings.ingest_enabled:
        listener = IngestionListener(raw=store.raw, state=store.state)
        application.state.mqtt = ConnectionState(connected=False)
        transport = MqttTransport.from_settings(settings, state=application.state.mqtt)
        tasks.append(asyncio.create_task(listener.run(transport), name="ingestion"))

    if settings.scheduler_enabled:
        jobs = build_rollup_jobs(store, completed_windows=settings.rollup_completed_windows)
        scheduler = RollupScheduler(jobs)
        tasks.append(asyncio.create_task(scheduler.run(), name="rollup-scheduler"))

    logger.info("Started background tasks: %s", [task.get_name() for task in tasks])
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        build_default_router.cache_clear()
        build_default_store.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(
        title="Sensor Rollup Service",
        description="Temperature and humidity readings stored at raw, hourly and daily resolution.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app

app = create_app()
