"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nearmatch.api.request_id import get_request_id
from nearmatch.domain.errors import Conflict, CoreError, Forbidden, InvalidArgument, NotFound, Unauthenticated
from nearmatch.infra.idempotency import IdempotencyConflictError
from nearmatch.infra.rate_limit import RateLimitExceeded

_STATUS_BY_ERROR = (
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
)


def map_error(exc: Exception) -> HTTPException:
    if isinstance(exc, RateLimitExceeded):
        return HTTPException(status.HTTP_429_TOO_MANY_REQUESTS, detail=exc.reason)
    if isinstance(exc, IdempotencyConflictError):
        return HTTPException(status.HTTP_409_CONFLICT, detail=str(exc) or "idempotency_conflict")
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code, detail=exc.reason)
    return HTTPException(status.HTTP_400_BAD_REQUEST, detail=getattr(exc, "reason", str(exc)))


def _envelope(request: Request, status_code: int, detail, headers=None, **extra) -> JSONResponse:
    rid = get_request_id(request)
    payload = {"detail": detail, "request_id": rid, **extra}
    response_headers = dict(headers or {})
    response_headers.setdefault("X-Request-Id", rid)
    return JSONResponse(status_code=status_code, content=payload, headers=response_headers)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        return _envelope(request, exc.status_code, exc.detail, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        return _envelope(request, 422, "validation_error", errors=jsonable_errors(exc))

    @app.exception_handler(CoreError)
    async def core_exc_handler(request: Request, exc: CoreError):  # type: ignore[override]
        mapped = map_error(exc)
        return _envelope(request, mapped.status_code, mapped.detail)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_exc_handler(request: Request, exc: RateLimitExceeded):  # type: ignore[override]
        mapped = map_error(exc)
        return _envelope(request, mapped.status_code, mapped.detail, {"Retry-After": "60"})

    @app.exception_handler(IdempotencyConflictError)
    async def idempotency_exc_handler(request: Request, exc: IdempotencyConflictError):  # type: ignore[override]
        mapped = map_error(exc)
        return _envelope(request, mapped.status_code, mapped.detail)


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic error contexts may carry exception objects that json cannot encode
    errors = []
    for error in exc.errors():
        item = {key: value for key, value in error.items() if key != "ctx"}
        if "ctx" in error:
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(item)
    return errors
