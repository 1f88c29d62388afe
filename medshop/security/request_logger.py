from __future__ import annotations

import time
from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from medshop.core.logging import log_error, log_info


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per HTTP request with its status and duration."""

    def __init__(
        self,
        app,
        *,
        exempt_paths: Iterable[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths or ())

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return await call_next(request)

        client_ip = request.headers.get("x-forwarded-for")
        if client_ip:
            client_ip = client_ip.split(",")[0].strip()
        else:
            client = request.client
            client_ip = client.host if client else "unknown"

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            log_error(
                "Request raised unhandled exception",
                method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                client_ip=client_ip,
                error=str(exc),
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        if response.status_code >= 500:
            log_error(
                "Request completed with server error",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_ip=client_ip,
            )
        else:
            log_info(
                "Request completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_ip=client_ip,
            )
        return response
