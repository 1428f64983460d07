import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import automation, bundles, harvest, health
from .config import settings
from .core.automation.store import StoreError
from .logging_config import setup_logging
from .services import close_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield
    await close_services()


# Create FastAPI app
app = FastAPI(
    title="Launchpad Automation API",
    description="Bundle relay submission and scheduled liquidity automation",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
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

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(bundles.router, tags=["Bundles"])
app.include_router(automation.router, tags=["Automation"])
app.include_router(harvest.router, tags=["Harvest"])


@app.exception_handler(StoreError)
async def store_unavailable(request: Request, exc: StoreError):
    logger.error(f"Automation store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Automation store unavailable"})


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Launchpad Automation API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "launchpad.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
