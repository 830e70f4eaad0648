"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowengine.config import settings
from flowengine.db.engine import engine, init_db

# Routers
from flowengine.api.events import router as events_router
from flowengine.api.runs import router as runs_router
from flowengine.api.workflows import router as workflows_router

from flowengine.utils.logger import setup_logger
setup_logger(log_format=settings.LOG_FORMAT, log_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)

import logging
logger = logging.getLogger("flowengine.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
    except Exception as exc:
        logger.warning("create_all partial failure (likely existing tables): %s", exc)
    logger.info("Application startup complete")
    yield
    await engine.dispose()


app = FastAPI(
    title="flowengine",
    description="Visual workflow execution engine",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(workflows_router, prefix="/api/workflows", tags=["workflows"])
app.include_router(runs_router, prefix="/api/runs", tags=["runs"])
app.include_router(events_router, prefix="/api", tags=["events"])


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("flowengine.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
