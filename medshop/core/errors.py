from __future__ import annotations

import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from medshop.core.logging import log_error, log_warning


class AppError(Exception):
    """Error raised by services and dependencies with an HTTP status attached."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = True

    def __repr__(self) -> str:
        return f"AppError(status_code={self.status_code!r}, message={self.message!r})"


def _error_body(message: str, exc: BaseException, *, include_stack: bool) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if include_stack:
        body["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return body


def _validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors.append(
            {
                "field": ".".join(location),
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type"),
            }
        )
    return errors


def register_exception_handlers(app: FastAPI, *, include_stack: bool = False) -> None:
    """Attach the JSON error handlers shared by every router."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            log_error(
                "Request failed",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                error=exc.message,
            )
        else:
            log_warning(
                "Request rejected",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                error=exc.message,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc, include_stack=include_stack),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Validation Error",
                "errors": _validation_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        log_error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=repr(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("Something went wrong!", exc, include_stack=include_stack),
        )
