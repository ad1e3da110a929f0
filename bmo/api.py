"""FastAPI app: lifespan, middleware, error mapping, health and routers."""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from azure_ai.utils import AzureAPIError

from .appwrite import AppwriteError
from .config import settings
from .errors import (
    AuthenticationError,
    BmoError,
    NotFoundError,
    PermissionDeniedError,
    TenantAccessError,
    ValidationError,
)
from .logging_config import setup_logging
from .pipelines.ingestion import DocumentProcessingError, DocumentRequestError
from .routes import (
    accounts,
    analytics,
    audit,
    auth,
    chat,
    companies,
    documents,
    reconciliations,
    reports,
    storage,
    transactions,
    workflows,
)
from .statements import StatementParseError

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    setup_logging()
    logger.info(f"{settings.app_name} starting up ({settings.environment.value})")

    yield

    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Multi-tenant accounting backend with document OCR, RAG chat and financial reporting",
    lifespan=lifespan,
)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (``X-Request-Id`` or generated) and log its outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        response.headers["X-Request-Id"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
            extra={"request_id": request_id},
        )
        return response


app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers

def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "validation_error", exc)


@app.exception_handler(StatementParseError)
async def parse_error_handler(request: Request, exc: StatementParseError):
    """Handle bank statement parsing errors."""
    logger.error(f"Parse error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "parse_error", exc)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=ErrorResponse(error="authentication_error", detail=str(exc)).model_dump(),
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(TenantAccessError)
async def tenant_access_error_handler(request: Request, exc: TenantAccessError):
    logger.warning(f"Tenant access denied: {exc}")
    return _error(status.HTTP_403_FORBIDDEN, "tenant_access_denied", exc)


@app.exception_handler(PermissionDeniedError)
async def permission_error_handler(request: Request, exc: PermissionDeniedError):
    return _error(status.HTTP_403_FORBIDDEN, "permission_denied", exc)


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "not_found", exc)


@app.exception_handler(DocumentProcessingError)
async def processing_error_handler(request: Request, exc: DocumentProcessingError):
    """Handle document processing errors."""
    logger.error(f"Processing error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": str(exc),
            "processing_time_ms": exc.processing_time_ms,
        },
    )


@app.exception_handler(DocumentRequestError)
async def document_request_error_handler(request: Request, exc: DocumentRequestError):
    """Reject incomplete processing requests with the processing error body."""
    logger.warning(f"Document request rejected: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": str(exc)},
    )


@app.exception_handler(AppwriteError)
async def appwrite_error_handler(request: Request, exc: AppwriteError):
    logger.error(f"Appwrite error ({exc.status_code}): {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "appwrite_error", exc)


@app.exception_handler(AzureAPIError)
async def azure_error_handler(request: Request, exc: AzureAPIError):
    logger.error(f"Azure API error ({exc.status_code}): {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "azure_api_error", exc)


@app.exception_handler(BmoError)
async def bmo_error_handler(request: Request, exc: BmoError):
    logger.error(f"Unhandled application error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", exc)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "docs": "/docs",
    }


for module in (
    auth,
    companies,
    accounts,
    transactions,
    documents,
    audit,
    chat,
    reports,
    analytics,
    reconciliations,
    workflows,
    storage,
):
    app.include_router(module.router)
