import logging
import re
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from coupon_engine.core.logging_config import request_id_ctx_var

logger = logging.getLogger("coupon_engine.request")

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def _incoming_request_id(request: Request) -> str:
    # Checkout forwards its own id so a redemption can be traced across services.
    candidate = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if candidate and _REQUEST_ID_RE.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _incoming_request_id(request)
        token = request_id_ctx_var.set(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            level = logging.WARNING if status_code >= 500 else logging.INFO
            logger.log(
                level,
                "request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            request_id_ctx_var.reset(token)
