"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from productgen import __version__
from productgen.api.routes import api_router
from productgen.config import settings
from productgen.database import init_db
from productgen.exceptions import (
    ConfigurationError,
    GenerationError,
    InvalidTransition,
    ProductGenError,
    ProductNotFound,
    QueueAlreadyProcessing,
    QueueLocked,
    QueueNotFound,
    TemplateNotFound,
)
from productgen.middleware import RateLimitMiddleware
from productgen.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[ProductGenError], int]] = [
    (QueueNotFound, 404),
    (ProductNotFound, 404),
    (TemplateNotFound, 404),
    (ConfigurationError, 400),
    (InvalidTransition, 409),
    (QueueLocked, 409),
    (QueueAlreadyProcessing, 409),
    (GenerationError, 502),
]


def status_for(error: ProductGenError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    # remaining queue errors are scheduler failures
    return 503


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    await init_db()
    logger.info(f"productgen {__version__} started")
    yield


app = FastAPI(
    title="productgen",
    description="AI-written product descriptions, short descriptions and SEO copy",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


@app.exception_handler(ProductGenError)
async def handle_productgen_error(request: Request, exc: ProductGenError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = ErrorResponse(detail=exc.message, code=exc.code)
    return JSONResponse(status_code=status, content=body.model_dump())


@app.middleware("http")
async def add_security_headers(request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "productgen",
        "version": __version__,
        "docs": "/api/docs",
    }
