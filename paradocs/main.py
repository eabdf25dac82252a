"""
Paradocs Pattern Engine API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups,
and manages the MongoDB connection lifecycle.

Extension points:
  - Add new route groups with app.include_router() below
  - Map new engine errors to HTTP statuses in the exception handler block
  - Change startup behaviour in the lifespan context manager

RUN
───
    uvicorn paradocs.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from paradocs.core.config import settings
from paradocs.core.database import close_mongo_connection, connect_to_mongo
from paradocs.core.errors import PatternNotFoundError, StoreUnavailableError
from paradocs.core.rate_limit import limiter
from paradocs.routes.cron import router as cron_router
from paradocs.routes.health import router as health_router
from paradocs.routes.hotspots import router as hotspots_router
from paradocs.routes.patterns import router as patterns_router
from paradocs.routes.quality import router as quality_router

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage startup and shutdown lifecycle.

    Code before `yield` runs on startup; code after runs on shutdown.
    """
    logger.info("Starting Paradocs Pattern Engine (env: %s)", settings.environment)
    await connect_to_mongo()
    yield
    logger.info("Shutting down Paradocs Pattern Engine")
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Paradocs Pattern Engine",
    description=(
        "Geographic clustering, temporal surge detection and report quality "
        "scoring for paranormal sighting reports. Every score is an estimate "
        "and is returned with uncertainty bounds."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Routes opt-in with @limiter.limit("N/minute") + request: Request parameter.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Engine errors ─────────────────────────────────────────────────────────────
@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error("Store unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


@app.exception_handler(PatternNotFoundError)
async def pattern_not_found_handler(request: Request, exc: PatternNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Pattern not found"})


# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])

# Read side
app.include_router(patterns_router)
app.include_router(hotspots_router)
app.include_router(quality_router)

# Scheduler
app.include_router(cron_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "Paradocs Pattern Engine",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
