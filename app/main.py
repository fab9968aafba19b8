"""
Folder Sorter - Main FastAPI Application

Watches folders and files new arrivals where they belong:
- Folder registration and watch control
- Engine status, processing log and scan progress
- Undo of the most recent move
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
import sys

from app.utils.config import get_settings
from app.api import health, engine, folders
from domains.organizing.engine import close_engine, get_engine


settings = get_settings()

# Configure logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=settings.log_level
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")

    try:
        get_engine()
        logger.success("Organizing engine ready")
    except Exception as e:
        logger.error(f"Failed to start organizing engine: {e}")
        raise

    yield

    # Cleanup
    logger.info("Shutting down application...")
    close_engine()
    logger.success("Application shut down complete")


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Watches folders and organizes new files with a language model",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
        }
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(engine.router, prefix="/engine", tags=["Engine"])
app.include_router(folders.router, prefix="/folders", tags=["Folders"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Folder Sorter",
        "version": settings.api_version,
        "status": "operational",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
