"""FastAPI application entrypoint. No business logic; only wiring, middleware and the job scheduler."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from correlator.api.v1 import router as v1_router
from correlator.core.config import settings
from correlator.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the recurring sync/scan/retention jobs unless cron drives the CLIs instead."""
    tasks = start_scheduler(settings) if settings.SCHEDULER_ENABLED else []
    if tasks:
        logger.info("Scheduler started: %s", ", ".join(t.get_name() for t in tasks))
    yield
    await stop_scheduler(tasks)


app = FastAPI(
    title="Vulnerability Correlator API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "Vulnerability Correlator API"}
