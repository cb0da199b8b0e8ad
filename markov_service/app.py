"""
Markov Text Generation Service
Main application entry point

Serves n-gram models over HTTP: train from a corpus, generate constrained
sentences, and query next-token probabilities and completions.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from markov_service.api.routers import markov_router
from markov_service.config import settings
from markov_service.utils.logger import setup_logger

# Setup logging
logger = setup_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for service initialization"""
    logger.info("[BOOT] Starting Markov Service...")
    logger.info(
        f"[BOOT] Defaults: order={settings.MARKOV_DEFAULT_ORDER} "
        f"max_attempts={settings.MARKOV_MAX_ATTEMPTS} "
        f"length={settings.MARKOV_MIN_LENGTH}-{settings.MARKOV_MAX_LENGTH}"
    )

    try:
        app.state.model_cache = markov_router.MODEL_CACHE
        logger.info("[BOOT] Markov Service ready!")
        yield

    except Exception as e:
        logger.error(f"[ERR] Failed to initialize: {e}", exc_info=True)
        raise
    finally:
        logger.info("[SHUTDOWN] Cleaning up...")
        markov_router.MODEL_CACHE.clear()
        logger.info("[SHUTDOWN] Markov Service stopped")


# Create FastAPI app
app = FastAPI(
    title="Markov Service",
    description="Constrained n-gram text generation",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"[ERR] Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": {
                "code": "MARKOV_SERVICE_ERROR",
                "message": "Internal server error occurred",
                "details": {"type": type(exc).__name__},
            },
        },
    )


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "ok": True,
        "data": {
            "status": "healthy",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "models": sorted(markov_router.MODEL_CACHE),
        },
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "ok": True,
        "data": {
            "service": settings.SERVICE_NAME,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "markov": "/markov/*",
            },
        },
    }


app.include_router(markov_router.router, prefix="/markov", tags=["Markov"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "markov_service.app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
