import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clinicbook.core.config import settings
from clinicbook.core.errors import SchedulingError, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"


def cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": _ALLOWED_METHODS,
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }
    allowed = settings.cors_origins_list
    if origin and origin in allowed:
        headers["Access-Control-Allow-Origin"] = origin
    elif allowed:
        headers["Access-Control-Allow-Origin"] = allowed[0]
    return headers


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=cors_headers(request.headers.get("origin")))


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Caller-facing engine errors; the unit of work has already been rolled back."""
    logger.warning("%s %s rejected: %s (%s)", request.method, request.url.path, exc.detail, exc.code)
    return _error_response(request, exc.status_code, exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Same 400 body as engine validation errors
    errors = [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return await scheduling_error_handler(request, ValidationError("Invalid request", errors=errors))


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers={**cors_headers(request.headers.get("origin")), **(exc.headers or {})},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Include CORS so 500 responses are not blocked by browser. Details only outside production."""
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    detail = "Internal server error" if settings.env == "production" else f"{type(exc).__name__}: {exc}"
    return _error_response(request, 500, {"detail": detail})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
