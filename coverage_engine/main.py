"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from coverage_engine.api.v1.endpoints import health
from coverage_engine.api.v1.router import api_router
from coverage_engine.core.config import settings
from coverage_engine.core.database import close_database, init_database
from coverage_engine.core.exceptions import (
    RecordNotFoundError,
    StoreError,
    TransientStoreError,
    ValidationError,
)
from coverage_engine.utils.logging import get_logger
from coverage_engine.utils.responses import create_error_detail

LOGGER = get_logger(__name__, level=settings.log_level)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "dual_write": settings.dual_write_enabled,
        },
    )
    await init_database()

    yield

    LOGGER.info("Shutting down application")
    await close_database()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Typed limits and deductibles for insurance product coverages",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    error_detail = create_error_detail(
        title="Validation Failed",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=str(exc),
        request=request,
        errors=exc.issues,
    )
    return JSONResponse(status_code=422, content={"detail": error_detail.model_dump(mode="json")})


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    error_detail = create_error_detail(
        title="Not Found",
        status=status.HTTP_404_NOT_FOUND,
        detail=str(exc),
        request=request,
    )
    return JSONResponse(status_code=404, content={"detail": error_detail.model_dump(mode="json")})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    LOGGER.error(f"Record store failure: {exc}", extra={"path": request.url.path})
    code = 503 if isinstance(exc, TransientStoreError) else 500
    error_detail = create_error_detail(
        title="Record Store Unavailable" if code == 503 else "Record Store Error",
        status=code,
        detail=str(exc),
        request=request,
    )
    return JSONResponse(status_code=code, content={"detail": error_detail.model_dump(mode="json")})


@app.exception_handler(ValueError)
async def bad_identifier_handler(request: Request, exc: ValueError) -> JSONResponse:
    # Raised by path helpers for ids that cannot address a document
    error_detail = create_error_detail(
        title="Bad Request",
        status=status.HTTP_400_BAD_REQUEST,
        detail=str(exc),
        request=request,
    )
    return JSONResponse(status_code=400, content={"detail": error_detail.model_dump(mode="json")})


# Include routers
app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get(
    "/",
    response_model=RootResponse,
    tags=["Root"],
    summary="Root endpoint",
    description="Get basic information about the API",
    operation_id="get_public_root_metadata",
)
async def root() -> RootResponse:
    """Root endpoint.

    Returns:
        RootResponse: Basic API information
    """
    return RootResponse(
        message="Server is running",
        version=settings.app_version,
        docs="/docs",
        health="/health",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "coverage_engine.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
