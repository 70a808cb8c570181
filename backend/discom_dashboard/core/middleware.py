"""Custom ASGI middleware used by the FastAPI app."""

from __future__ import annotations

import re
import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from discom_dashboard.core.config import settings
from discom_dashboard.core.logging import request_id_ctx_var, session_id_ctx_var

_SESSION_PATH = re.compile(r"^/api/sessions/(?P<sid>[^/]+)")


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Injects request and session IDs and emits structured access logs."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        match = _SESSION_PATH.match(request.url.path)
        request_token = request_id_ctx_var.set(request_id)
        session_token = session_id_ctx_var.set(match.group("sid") if match else "-")
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response else 500
            logger.bind(
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=round(duration_ms, 2),
            ).info("request_completed")
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            request_id_ctx_var.reset(request_token)
            session_id_ctx_var.reset(session_token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests with a declared body larger than the configured limit."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        content_length = request.headers.get("content-length")
        if content_length is not None and content_length.isdigit():
            if int(content_length) > settings.MAX_REQUEST_BYTES:
                return JSONResponse(
                    status_code=413,
                    content={"detail": "Request entity too large"},
                )

        return await call_next(request)
