import logging
import time
import uuid
from functools import lru_cache

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from showcase.config import StorageConfig, settings
from showcase.errors import ConfigError, NotFoundError, UploadPipelineError, ValidationError
from showcase.events import REQUEST_LOGGER_NAME, get_event_logger, log_event, trace_id
from showcase.metrics import http_request_duration_seconds, metrics_response
from showcase.models import PartRecord
from showcase.schemas import (
    ABORT_PATH,
    COMPLETE_PATH,
    INITIATE_PATH,
    PRESIGN_DIRECT_PATH,
    PRESIGN_PART_PATH,
    UPLOAD_PATHS,
    AbortRequest,
    CompleteRequest,
    CompleteResponse,
    ErrorResponse,
    InitiateRequest,
    InitiateResponse,
    PresignDirectRequest,
    PresignDirectResponse,
    PresignPartRequest,
    PresignPartResponse,
)
from showcase.storage import S3Presigner, build_presigner
from showcase.tracing import setup_tracing

app = FastAPI(title=settings.app_name, version=settings.app_version)
setup_tracing(app)
request_logger = get_event_logger(REQUEST_LOGGER_NAME)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-Request-ID",
    "Access-Control-Expose-Headers": "X-Request-ID",
}


@lru_cache
def get_presigner() -> S3Presigner:
    return build_presigner(StorageConfig.from_settings(settings))


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return str(route.path)
    return request.url.path


def _error_code_for_status(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        404: "not_found",
        405: "method_not_allowed",
        500: "internal_error",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _error_response(
    request: Request,
    status_code: int,
    detail: str,
    error_code: str,
    error_class: str,
    headers: dict | None = None,
) -> JSONResponse:
    log_event(
        request_logger,
        {
            "event": "request_error",
            "request_id": _request_id(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_class": error_class,
            "error_code": error_code,
            "detail": detail,
        },
        level=logging.WARNING if status_code < 500 else logging.ERROR,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error_code": error_code,
            "request_id": _request_id(request),
            "trace_id": trace_id(),
        },
        headers={**CORS_HEADERS, **(headers or {})},
    )


COMMON_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid fields"},
    500: {"model": ErrorResponse, "description": "Storage not configured or storage failure"},
}
SESSION_ERROR_RESPONSES = {
    **COMMON_ERROR_RESPONSES,
    404: {"model": ErrorResponse, "description": "Unknown or expired multipart session"},
}


@app.middleware("http")
async def request_context_and_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    start = time.perf_counter()

    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    for name, value in CORS_HEADERS.items():
        response.headers.setdefault(name, value)
    http_request_duration_seconds.labels(
        method=request.method,
        route=_route_label(request),
        status_code=str(response.status_code),
    ).observe(duration_ms / 1000.0)

    log_event(
        request_logger,
        {
            "event": "request_completed",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(
        request,
        exc.status_code,
        str(exc.detail),
        _error_code_for_status(exc.status_code),
        "client_error" if 400 <= exc.status_code < 500 else "server_error",
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(location)
        messages.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return _error_response(request, 400, "; ".join(messages) or "invalid request", "bad_request", "client_error")


@app.exception_handler(UploadPipelineError)
async def pipeline_exception_handler(request: Request, exc: UploadPipelineError):
    if isinstance(exc, ValidationError):
        return _error_response(request, 400, str(exc), "bad_request", "client_error")
    if isinstance(exc, NotFoundError):
        return _error_response(request, 404, str(exc), "not_found", "client_error")
    if isinstance(exc, ConfigError):
        return _error_response(request, 500, str(exc), "config_missing", "configuration_error")
    return _error_response(request, 500, str(exc), "storage_error", "storage_error")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    return _error_response(request, 500, "internal server error", "internal_error", "unhandled_exception")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict:
    return {
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "storage_configured": StorageConfig.from_settings(settings).is_configured,
    }


@app.get("/metrics")
def metrics() -> Response:
    return metrics_response()


def _preflight() -> Response:
    return Response(status_code=200)


for _path in UPLOAD_PATHS:
    app.add_api_route(_path, _preflight, methods=["OPTIONS"], include_in_schema=False)


@app.post(INITIATE_PATH, response_model=InitiateResponse, responses=COMMON_ERROR_RESPONSES)
def initiate_upload(
    payload: InitiateRequest,
    presigner: S3Presigner = Depends(get_presigner),
) -> InitiateResponse:
    upload_id = presigner.initiate(payload.file_name, payload.content_type)
    return InitiateResponse(upload_id=upload_id)


@app.post(PRESIGN_PART_PATH, response_model=PresignPartResponse, responses=SESSION_ERROR_RESPONSES)
def presign_part(
    payload: PresignPartRequest,
    presigner: S3Presigner = Depends(get_presigner),
) -> PresignPartResponse:
    url = presigner.presign_part(payload.file_name, payload.upload_id, payload.part_number)
    return PresignPartResponse(url=url)


@app.post(COMPLETE_PATH, response_model=CompleteResponse, responses=SESSION_ERROR_RESPONSES)
def complete_upload(
    payload: CompleteRequest,
    presigner: S3Presigner = Depends(get_presigner),
) -> CompleteResponse:
    parts = [PartRecord(part_number=part.part_number, etag=part.etag) for part in payload.parts]
    result = presigner.complete(payload.file_name, payload.upload_id, parts)
    return CompleteResponse(public_url=result.public_url, location=result.location)


@app.post(ABORT_PATH, responses=COMMON_ERROR_RESPONSES)
def abort_upload(
    payload: AbortRequest,
    presigner: S3Presigner = Depends(get_presigner),
) -> Response:
    presigner.abort(payload.file_name, payload.upload_id)
    return Response(status_code=200)


@app.post(PRESIGN_DIRECT_PATH, response_model=PresignDirectResponse, responses=COMMON_ERROR_RESPONSES)
def presign_direct(
    payload: PresignDirectRequest,
    presigner: S3Presigner = Depends(get_presigner),
) -> PresignDirectResponse:
    target = presigner.presign_direct(payload.file_name, payload.content_type)
    return PresignDirectResponse(url=target.put_url, public_url=target.public_url)
