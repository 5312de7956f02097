"""
FastAPI server for formrelay.

Receives multipart uploads from the marketing form and relays them to
Marketo. Every upload is admitted through a bounded-concurrency queue.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Depends, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from formrelay import __version__
from formrelay.core.config import get_settings
from formrelay.core.errors import MarketoError, UploadRejected
from formrelay.core.models import ErrorDetails, ErrorResponse, UploadedFile
from formrelay.marketo.client import MarketoClient
from formrelay.queue.admission import AdmissionQueue, QueueFull, ShuttingDown, TaskTimeout
from formrelay.relay.service import UploadRelay
from formrelay.relay.validation import UploadLimits, format_file_name
from formrelay.utils.logging import setup_logging
from formrelay.utils.retry import RetryConfig

logger = structlog.get_logger()

# Global instances
admission_queue: AdmissionQueue | None = None
marketo_client: MarketoClient | None = None
upload_relay: UploadRelay | None = None

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Resource-Policy": "same-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds conservative security headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for key, value in SECURITY_HEADERS.items():
            response.headers.setdefault(key, value)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    global admission_queue, marketo_client, upload_relay

    setup_logging()
    settings = get_settings()

    admission_queue = AdmissionQueue(
        limit=settings.relay.concurrency,
        max_pending=settings.relay.max_pending,
        task_timeout=settings.relay.task_timeout,
    )
    marketo_client = MarketoClient(
        settings.marketo,
        retry_config=RetryConfig(
            max_retries=settings.relay.max_retries,
            base_delay=settings.relay.retry_delay,
        ),
    )
    upload_relay = UploadRelay(marketo_client, UploadLimits.from_settings(settings.relay))

    if not settings.marketo.is_configured:
        logger.warning("Marketo not configured - uploads will fail")

    logger.info(
        "Starting formrelay API server",
        environment=settings.environment,
        concurrency=settings.relay.concurrency,
        max_pending=settings.relay.max_pending,
        marketo_host=settings.marketo.host,
    )

    yield

    logger.info("Shutting down formrelay API server")
    await admission_queue.shutdown()
    await marketo_client.aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="formrelay API",
        description="Relays marketing form uploads to Marketo",
        version=__version__,
        lifespan=lifespan,
    )

    if not settings.is_development:
        app.add_middleware(SecurityHeadersMiddleware)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.server.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        error = "Not Found" if exc.status_code == 404 else exc.detail
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": error},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path)
        content: dict[str, Any] = {"success": False, "error": "Something went wrong!"}
        if get_settings().is_development:
            content["errorDetails"] = {"type": type(exc).__name__, "message": str(exc)}
        return JSONResponse(status_code=500, content=content)

    return app


app = create_app()


# Dependencies

def get_queue() -> AdmissionQueue:
    """Get the admission queue."""
    if admission_queue is None:
        raise HTTPException(status_code=503, detail="Admission queue not initialized")
    return admission_queue


def get_marketo_client() -> MarketoClient:
    """Get the Marketo client."""
    if marketo_client is None:
        raise HTTPException(status_code=503, detail="Marketo client not initialized")
    return marketo_client


def get_relay() -> UploadRelay:
    """Get the upload relay."""
    if upload_relay is None:
        raise HTTPException(status_code=503, detail="Upload relay not initialized")
    return upload_relay


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error_details=ErrorDetails(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.to_dict())


async def _read_uploads(
    files: list[UploadFile],
    names: list[str],
    limits: UploadLimits,
) -> list[UploadedFile]:
    use_names = len(names) == len(files)
    uploaded = []
    for index, upload in enumerate(files):
        filename = upload.filename or f"upload_{index + 1}"
        # One byte past the cap is enough for validation to reject the file
        content = await upload.read(limits.max_file_size + 1)
        uploaded.append(UploadedFile(
            filename=filename,
            content=content,
            content_type=upload.content_type or "application/octet-stream",
            name=format_file_name(names[index]) if use_names and names[index] else None,
        ))
    return uploaded


# Routes

@app.get("/")
async def root() -> dict[str, str]:
    """Basic liveness route."""
    return {"status": "Server is running"}


@app.get("/health")
async def health_check(queue: AdmissionQueue = Depends(get_queue)) -> dict[str, Any]:
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy" if settings.marketo.is_configured and not queue.closed else "degraded",
        "version": __version__,
        "marketo_configured": settings.marketo.is_configured,
        "queue": {
            "limit": queue.limit,
            **queue.stats.to_dict(),
        },
    }


@app.get("/api/test-token")
async def test_token(client: MarketoClient = Depends(get_marketo_client)) -> Any:
    """Check that a Marketo token can be obtained."""
    try:
        token = await client.get_token(force=True)
    except MarketoError as e:
        return JSONResponse(status_code=500, content={"success": False, "error": e.message})

    return {
        "success": True,
        "data": {"scope": token.scope, "expires_in": round(token.expires_in)},
    }


@app.post("/api/upload")
async def upload_files(
    files: list[UploadFile] | None = File(default=None),
    names: list[str] | None = Form(default=None),
    email: str | None = Form(default=None),
    queue: AdmissionQueue = Depends(get_queue),
    relay: UploadRelay = Depends(get_relay),
) -> Any:
    """Relay uploaded files to Marketo and update the lead."""
    files = files or []
    logger.info(
        "Upload endpoint hit",
        files=[{"filename": f.filename, "content_type": f.content_type, "size": f.size} for f in files],
        email=email,
    )

    if not files:
        return JSONResponse(status_code=400, content={"success": False, "error": "No files uploaded"})

    if len(files) > relay.limits.max_files:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Maximum {relay.limits.max_files} files allowed"},
        )

    uploaded = await _read_uploads(files, names or [], relay.limits)

    try:
        response = await queue.admit(lambda: relay.process(uploaded, email))
    except UploadRejected as e:
        return JSONResponse(status_code=400, content={"success": False, "error": e.message})
    except QueueFull as e:
        return _error(503, "QUEUE_FULL", str(e))
    except ShuttingDown as e:
        return _error(503, "SHUTTING_DOWN", str(e))
    except TaskTimeout as e:
        return _error(504, "UPLOAD_TIMEOUT", str(e))
    except Exception as e:
        logger.exception("Upload failed", email=email)
        return _error(500, "UPLOAD_ERROR", str(e))

    return response.to_dict()


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool | None = None,
) -> None:
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "formrelay.api.server:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=settings.server.reload if reload is None else reload,
        workers=settings.server.workers,
    )


if __name__ == "__main__":
    run_server()
