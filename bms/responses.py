"""Uniform JSON envelope for errors raised anywhere in a FastAPI app."""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bms.envelope import ApiResponse

log = logging.getLogger("uvicorn.error")

_STATUS_MESSAGES = {
    401: "Authentication required",
    403: "Access denied",
    404: "Resource not found",
    405: "Method not allowed",
}


def error_response(request: Request, status_code: int, message: str, errors: list[str] | None = None, headers=None) -> JSONResponse:
    body = ApiResponse.error(message, errors=errors, path=request.url.path)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


def _validation_messages(exc: RequestValidationError) -> list[str]:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        out.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return out


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else _STATUS_MESSAGES.get(exc.status_code, "Request failed")
        return error_response(request, exc.status_code, message, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_response(request, 400, "Validation failed", errors=_validation_messages(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log.exception("[Error] Unhandled exception on %s %s", request.method, request.url.path)
        return error_response(request, 500, "An unexpected error occurred. Please try again later.")
