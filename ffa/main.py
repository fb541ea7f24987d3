"""FastAPI application for the FFA league engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ffa.config import get_settings
from ffa.database import close_db, init_db
from ffa.routes import router as league_router
from ffa.state import close_feed

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting FFA league engine (season {settings.CURRENT_SEASON})...")
    await init_db()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await close_feed()
    await close_db()


app = FastAPI(
    title="FFA League Engine",
    description="Live standings, knockout brackets and manager ratings for a fantasy league",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(league_router)
