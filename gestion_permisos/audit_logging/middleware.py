from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware

from .events import PermissionActivity
from .sinks import ActivitySink, get_default_sink

# health checks stay out of the activity trail
_UNLOGGED_PATHS = frozenset({"/healthz"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, sink: ActivitySink | None = None) -> None:
        super().__init__(app)
        self._sink = sink or get_default_sink()

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in _UNLOGGED_PATHS:
            return await call_next(request)
        start = time.perf_counter()
        request_id = request.headers.get("x-request-id") or str(uuid4())
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = int((time.perf_counter() - start) * 1000)
            await self._log_request(
                request,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                result="error",
                latency_ms=latency_ms,
                request_id=request_id,
            )
            raise

        latency_ms = int((time.perf_counter() - start) * 1000)
        outcome = "success" if response.status_code < 400 else "failure"
        await self._log_request(
            request,
            status_code=response.status_code,
            result=outcome,
            latency_ms=latency_ms,
            request_id=request_id,
        )
        response.headers.setdefault("x-request-id", request_id)
        return response

    async def _log_request(
        self,
        request: Request,
        *,
        status_code: int,
        result: str,
        latency_ms: int,
        request_id: str,
    ) -> None:
        caller = getattr(request.state, "caller", None)
        client_host = request.client.host if request.client else None
        activity = PermissionActivity.now(
            actor=getattr(caller, "email", None) or getattr(caller, "id", None),
            action=request.method,
            resource_type="request",
            result=result,
            status_code=status_code,
            latency_ms=latency_ms,
            request_id=request_id,
            detail={
                "path": request.url.path,
                "query": str(request.url.query) if request.url.query else None,
                "role": getattr(caller, "role", None),
                "ip_address": client_host,
                "user_agent": request.headers.get("user-agent"),
            },
        )
        await self._sink.write(activity.to_payload())
