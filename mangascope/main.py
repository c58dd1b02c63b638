"""FastAPI application for the manga scraping API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mangascope.api.routes import router, scraper_service
from mangascope.config import settings

# Setup logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).

    The browser is launched lazily by the first scraping call, so startup
    only logs; shutdown closes the browser and the HTTP client.

    Args:
        app: FastAPI application instance
    """
    logger.info("Application starting up...")
    yield
    logger.info("Application shutting down...")
    await scraper_service.cleanup()


# Create FastAPI app
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description="Manga metadata, chapter list and chapter image extraction API",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routes
app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Mangascope API",
        "version": settings.API_VERSION,
        "providers": scraper_service.provider_status(),
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mangascope.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info",
    )
