"""
Main FastAPI application.

Provides REST API endpoints for the tax-lot harvesting engine.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taxlot_engine import __version__
from taxlot_engine.api.routes import lots, owners, tax_harvesting
from taxlot_engine.core.config import Config
from taxlot_engine.core.database import create_database_engine, get_session_factory
from taxlot_engine.core.errors import CollaboratorTimeout, NotFoundError, TransactionalError, ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app."""
    # Startup
    engine = create_database_engine(Config.get_database_url(), echo=False)
    app.state.engine = engine
    app.state.Session = get_session_factory(engine)
    logger.info("API connected to %s", engine.url.render_as_string(hide_password=True))
    yield
    # Shutdown
    app.state.engine.dispose()


app = FastAPI(
    title="Tax-Lot Harvesting Engine API",
    description="REST API for tax-lot cost basis tracking and tax-loss harvesting",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(TransactionalError)
async def conflict_handler(request: Request, exc: TransactionalError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(CollaboratorTimeout)
async def timeout_handler(request: Request, exc: CollaboratorTimeout):
    return JSONResponse(status_code=504, content={"detail": str(exc), "error": type(exc).__name__})


# Include routers
app.include_router(owners.router, prefix="/api/owners", tags=["owners"])
app.include_router(lots.router, prefix="/api/lots", tags=["lots"])
app.include_router(tax_harvesting.router, prefix="/api/tax-harvesting", tags=["tax-harvesting"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Tax-Lot Harvesting Engine API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
