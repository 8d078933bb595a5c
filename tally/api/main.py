"""
tally.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn tally.api.main:app --port 8003
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

from tally.api.deps import get_engine  # noqa: E402
from tally.database.engine import init_db  # noqa: E402
from tally.api.routes.users import router as users_router  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, verify tables."""
    engine = get_engine()
    init_db(engine)
    logger.info("Tally API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Tally API shutting down")


app = FastAPI(
    title="Tally API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(users_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
