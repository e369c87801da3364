"""Main FastAPI application for the telemetry generator service."""

import logging

from fastapi import FastAPI

from telemetry_generator.api import lifespan, router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Telemetry Generator API",
    description="FastAPI service for generating time-ordered sensor telemetry into Parquet files",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)
