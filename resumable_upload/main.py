import asyncio
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from resumable_upload.config import settings
from resumable_upload.coordinator import build_coordinator
from resumable_upload.db import init_db
from resumable_upload.domain import AlreadyExists, Completed, Fragment, InProgress, Rejected, Resumable
from resumable_upload.errors import SessionExpired, StorageIOError, UploadError
from resumable_upload.events import audit_event, log_event, request_logger, trace_id
from resumable_upload.maintenance import cleanup_once
from resumable_upload.metrics import http_request_duration_seconds, metrics_response
from resumable_upload.schemas import (
    ErrorResponse,
    FileMetadataResponse,
    FragmentUploadResponse,
    ProgressResponse,
    StatsResponse,
    VerifyRequest,
    VerifyResponse,
)
from resumable_upload.tracing import setup_tracing

coordinator = build_coordinator()


@asynccontextmanager
async def lifespan(_: FastAPI):
    stop_event = asyncio.Event()
    tasks: list[asyncio.Task] = []

    async def _periodic_cleanup_loop() -> None:
        while not stop_event.is_set():
            try:
                stats = await asyncio.to_thread(cleanup_once, coordinator)
                _log_event({"event": "cleanup_completed", **stats})
            except Exception as exc:
                _log_event({"event": "cleanup_error", "detail": str(exc), "error_class": "maintenance_error"})
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(1, settings.cleanup_interval_seconds))
            except asyncio.TimeoutError:
                pass

    if settings.registry_backend.lower() == "database":
        init_db()
    if settings.cleanup_enabled:
        tasks.append(asyncio.create_task(_periodic_cleanup_loop()))
    yield
    stop_event.set()
    for task in tasks:
        await task


app = FastAPI(title=settings.app_name, lifespan=lifespan)
setup_tracing(app)

ERROR_STATUS_BY_CODE = {
    StorageIOError.error_code: 503,
    SessionExpired.error_code: 410,
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _file_hash(request: Request) -> str | None:
    return request.path_params.get("file_hash")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return str(route.path)
    return request.url.path


def _log_event(payload: dict) -> None:
    log_event(request_logger, payload)


def _error_code_for_status(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        404: "not_found",
        409: "conflict",
        410: "gone",
        422: "validation_error",
        500: "internal_error",
        503: "storage_unavailable",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _error_response(
    request: Request, status_code: int, detail: str, error_code: str, file_hash: str | None = None
) -> JSONResponse:
    _log_event(
        {
            "event": "request_error",
            "request_id": _request_id(request),
            "file_hash": file_hash or _file_hash(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_class": "client_error" if 400 <= status_code < 500 else "server_error",
            "error_code": error_code,
            "detail": detail,
        }
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error_code": error_code,
            "request_id": _request_id(request),
            "file_hash": file_hash or _file_hash(request),
            "trace_id": trace_id(),
        },
    )


COMMON_ERROR_RESPONSES = {
    500: {"model": ErrorResponse, "description": "Internal server error"},
    503: {"model": ErrorResponse, "description": "Storage unavailable"},
}


@app.middleware("http")
async def request_context_and_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    start = time.perf_counter()

    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-App-Version"] = settings.app_version
    http_request_duration_seconds.labels(
        method=request.method,
        route=_route_label(request),
        status_code=str(response.status_code),
    ).observe(duration_ms / 1000.0)

    _log_event(
        {
            "event": "request_completed",
            "request_id": request_id,
            "file_hash": _file_hash(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
    )
    return response


@app.exception_handler(UploadError)
async def upload_error_handler(request: Request, exc: UploadError):
    status_code = ERROR_STATUS_BY_CODE.get(exc.error_code, 400)
    return _error_response(request, status_code, exc.message, exc.error_code, exc.file_hash)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(request, exc.status_code, str(exc.detail), _error_code_for_status(exc.status_code))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    _log_event({"event": "unhandled_exception", "request_id": _request_id(request), "detail": str(exc)})
    return _error_response(request, 500, "internal server error", "internal_error")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "storage_backend": settings.storage_backend,
        "coordination_backend": settings.coordination_backend,
        "registry_backend": settings.registry_backend,
    }


@app.get("/metrics")
def metrics() -> Response:
    return metrics_response()


@app.post("/v1/admin/cleanup", responses={**COMMON_ERROR_RESPONSES})
def run_cleanup() -> dict:
    stats = cleanup_once(coordinator)
    return {"status": "ok", **stats}


@app.put(
    "/v1/uploads/{file_hash}/fragments/{fragment_index}",
    response_model=FragmentUploadResponse,
    status_code=202,
    responses={
        **COMMON_ERROR_RESPONSES,
        200: {"model": FragmentUploadResponse, "description": "File merged or already present"},
        400: {"model": ErrorResponse, "description": "Fragment rejected"},
        409: {"model": FragmentUploadResponse, "description": "Merge failed, upload remains resumable"},
    },
)
async def upload_fragment(
    file_hash: str,
    fragment_index: int,
    request: Request,
    response: Response,
    total_count: int = Header(alias="X-Total-Count"),
    fragment_hash: str = Header(alias="X-Fragment-Hash"),
    file_name: str | None = Header(default=None, alias="X-File-Name"),
    business_category: str | None = Header(default=None, alias="X-Business-Category"),
    content_length: int = Header(default=0),
):
    body = await request.body()
    if content_length and content_length != len(body):
        raise HTTPException(status_code=400, detail="content-length mismatch")

    fragment = Fragment(file_hash=file_hash, index=fragment_index, fragment_hash=fragment_hash, payload=body)
    outcome = await asyncio.to_thread(
        coordinator.accept_fragment, fragment, total_count, file_name, business_category
    )
    if isinstance(outcome, Rejected):
        return _error_response(request, 400, outcome.reason, outcome.error_code, file_hash)

    payload = FragmentUploadResponse(
        file_hash=file_hash,
        fragment_index=fragment_index,
        status=outcome.status.value,
        message=outcome.message,
    )
    if isinstance(outcome, InProgress):
        payload.arrived_count = outcome.arrived_count
        payload.total_count = outcome.total_count
    elif isinstance(outcome, Completed):
        response.status_code = 200
        payload.file_metadata = FileMetadataResponse.from_metadata(outcome.metadata)
    else:
        response.status_code = 409
        payload.error_code = outcome.error_code
    return payload


@app.post("/v1/uploads/verify", response_model=VerifyResponse, responses={**COMMON_ERROR_RESPONSES})
def verify_upload(payload: VerifyRequest) -> VerifyResponse:
    outcome = coordinator.verify(payload.file_hash, payload.total_count)
    if isinstance(outcome, AlreadyExists):
        audit_event({"action": "instant_upload", "file_hash": payload.file_hash, "file_id": outcome.metadata.id})
        return VerifyResponse(
            file_hash=payload.file_hash,
            status=outcome.status.value,
            message="file already exists",
            file_metadata=FileMetadataResponse.from_metadata(outcome.metadata),
        )
    if isinstance(outcome, Resumable):
        return VerifyResponse(
            file_hash=payload.file_hash,
            status=outcome.status.value,
            message="upload can be resumed",
            arrived_indices=outcome.arrived_indices,
            progress=ProgressResponse.from_progress(payload.file_hash, outcome.progress),
        )
    return VerifyResponse(file_hash=payload.file_hash, status=outcome.status.value, message="file must be uploaded")


@app.get("/v1/uploads/{file_hash}/progress", response_model=ProgressResponse)
def upload_progress(file_hash: str) -> ProgressResponse:
    return ProgressResponse.from_progress(file_hash, coordinator.progress(file_hash))


@app.get("/v1/uploads/{file_hash}/fragments", response_model=list[int])
def arrived_fragments(file_hash: str) -> list[int]:
    return coordinator.arrived_indices(file_hash)


@app.get("/v1/files", response_model=list[FileMetadataResponse])
def list_files(category: str | None = None, name: str | None = None) -> list[FileMetadataResponse]:
    return [FileMetadataResponse.from_metadata(item) for item in coordinator.list_files(category, name)]


@app.get("/v1/files/stats", response_model=StatsResponse)
def file_stats(category: str | None = None) -> StatsResponse:
    return StatsResponse(**coordinator.stats(category))


@app.get(
    "/v1/files/{file_hash}",
    response_model=FileMetadataResponse,
    responses={404: {"model": ErrorResponse, "description": "File not found"}},
)
def file_info(file_hash: str) -> FileMetadataResponse:
    metadata = coordinator.file_info(file_hash)
    if metadata is None:
        raise HTTPException(status_code=404, detail="file not found")
    return FileMetadataResponse.from_metadata(metadata)


@app.delete(
    "/v1/files/{file_id}",
    responses={404: {"model": ErrorResponse, "description": "File not found"}},
)
def delete_file(file_id: str) -> dict[str, str]:
    if not coordinator.delete_file(file_id):
        raise HTTPException(status_code=404, detail="file not found")
    return {"status": "deleted", "file_id": file_id}
