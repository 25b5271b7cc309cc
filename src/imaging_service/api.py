"""HTTP API for the imaging service."""

import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from . import __version__
from .core.exceptions import (
    ErrorCategory,
    ImagingServiceError,
    PayloadTooLargeError,
    PipelineSpecError,
)
from .core.factories import PipelineServiceFactory
from .core.logging_config import get_logger
from .core.models import ServiceConfig
from .core.observability import LogContext
from .core.services import PipelineOutput, PipelineService, parse_pipeline

logger = get_logger("api")

MIN_FREE_DISK_BYTES = 100 * 1024 * 1024
REQUEST_ID_HEADER = "X-Request-ID"

router = APIRouter()


def get_service(request: Request) -> PipelineService:
    return request.app.state.service


def get_config(request: Request) -> ServiceConfig:
    return request.app.state.config


def _request_context(request: Request) -> LogContext:
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    return LogContext(
        correlation_id=request_id,
        component="api",
        metadata={"path": request.url.path},
    )


def _image_response(output: PipelineOutput, request: Request) -> Response:
    ignored = sum(1 for step in output.summary.steps if step.ignored)
    return Response(
        content=output.body,
        media_type=output.media_type,
        headers={
            REQUEST_ID_HEADER: request.state.request_id,
            "X-Cache": "HIT" if output.summary.cached else "MISS",
            "X-Ignored-Steps": str(ignored),
        },
    )


def _read_upload(upload: UploadFile, limit: int) -> bytes:
    data = upload.file.read(limit + 1)
    if len(data) > limit:
        raise PayloadTooLargeError(f"Uploaded image exceeds the {limit} byte limit")
    return data


@router.get("/health")
def health():
    """Liveness probe."""
    return {
        "status": "healthy",
        "message": "imaging-service is running",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/readiness")
def readiness(service: PipelineService = Depends(get_service)):
    """Readiness probe: scratch disk space and admission headroom."""
    disk = shutil.disk_usage(tempfile.gettempdir())
    disk_ok = disk.free >= MIN_FREE_DISK_BYTES
    gate = service.gate
    body = {
        "status": "ready" if disk_ok else "not_ready",
        "checks": {
            "disk": {"ok": disk_ok, "free_bytes": disk.free},
            "admission": {"active": gate.active, "limit": gate.limit},
        },
    }
    return JSONResponse(status_code=200 if disk_ok else 503, content=body)


@router.get("/metrics")
def metrics(service: PipelineService = Depends(get_service)):
    """Request, error and per-operation counters."""
    return service.metrics.snapshot()


@router.get("/pipeline")
def pipeline_from_url(
    request: Request,
    url: str = Query(..., description="Image URL to fetch"),
    operations: str = Query(..., description="JSON array of pipeline steps"),
    service: PipelineService = Depends(get_service),
):
    """Fetch an image from a URL and run the pipeline on it."""
    context = _request_context(request)
    specs = parse_pipeline(operations)
    output = service.process_url(url, specs, context)
    return _image_response(output, request)


@router.post("/pipeline")
def pipeline_from_upload(
    request: Request,
    operations: str = Form(..., description="JSON array of pipeline steps"),
    image: Optional[UploadFile] = File(None),
    file: Optional[UploadFile] = File(None),
    url: Optional[str] = Form(None),
    service: PipelineService = Depends(get_service),
    config: ServiceConfig = Depends(get_config),
):
    """Run the pipeline on an uploaded image, or on one fetched from ``url``."""
    context = _request_context(request)
    specs = parse_pipeline(operations)
    upload = image or file
    if upload is not None:
        data = _read_upload(upload, config.max_body_size)
        output = service.process_upload(data, specs, context)
    elif url:
        output = service.process_url(url, specs, context)
    else:
        raise PipelineSpecError("Provide an 'image' or 'file' upload, or a 'url' field")
    return _image_response(output, request)


def _error_response(request: Request, error: ImagingServiceError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    headers = {REQUEST_ID_HEADER: request_id} if request_id else None
    if error.status_code >= 500 and error.category is ErrorCategory.INTERNAL:
        logger.error(f"Internal error on {request.url.path}: {error}", exc_info=error)
        body = {
            "error": "Internal Server Error",
            "code": "INTERNAL_ERROR",
            "status": "error",
            "category": ErrorCategory.INTERNAL.value,
        }
        return JSONResponse(status_code=500, content=body, headers=headers)

    logger.warning(f"{request.method} {request.url.path} -> {error.status_code}: {error}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


async def handle_service_error(request: Request, exc: ImagingServiceError) -> JSONResponse:
    return _error_response(request, exc)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return _error_response(request, PipelineSpecError(f"Invalid request: {details}"))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc!r}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "code": "INTERNAL_ERROR",
            "status": "error",
            "category": ErrorCategory.INTERNAL.value,
        },
    )


def create_app(
    config: Optional[ServiceConfig] = None,
    service: Optional[PipelineService] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Service configuration (defaults to the environment)
        service: Pre-built pipeline service, mainly for tests

    Returns:
        Configured FastAPI app
    """
    config = config or ServiceConfig.from_env()
    app = FastAPI(title="imaging-service", version=__version__)
    app.state.config = config
    app.state.service = service or PipelineServiceFactory.create_service(config)

    app.include_router(router)
    app.add_exception_handler(ImagingServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
    return app
