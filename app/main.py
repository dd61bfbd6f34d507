from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.ingestion import build_default_ingestion
from services.jobs import build_default_backfill_service
from services.subscriber import MqttSubscriber
from settings import get_settings


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    backfill = build_default_backfill_service()
    subscriber: Optional[MqttSubscriber] = None
    if get_settings().mqtt_enabled:
        subscriber = MqttSubscriber.from_settings(build_default_ingestion())
        subscriber.start()
    try:
        yield
    finally:
        if subscriber is not None:
            subscriber.stop()
        backfill.shutdown()
        build_default_backfill_service.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Telemetry Ingest",
        description="Real-time ingestion and upstream backfill of sensor readings.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
