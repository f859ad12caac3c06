from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .audit_logging import ActivityLogger, ActivitySink, RequestLoggingMiddleware, get_default_sink
from .bus import PermissionSyncBus
from .cache import TTLCache
from .client import PermissionApiClient, build_http_client
from .config import settings
from .errors import PermissionsError
from .monitor import OrphanGrantMonitor
from .routers import directory, permissions
from .search import ensure_activity_index

logger = logging.getLogger(__name__)


def create_app(*, activity_sink: ActivitySink | None = None) -> FastAPI:
    sink = activity_sink or get_default_sink()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.http = build_http_client()
        app.state.sync_bus = PermissionSyncBus()
        app.state.directory_cache = TTLCache(settings.directory_cache_ttl_seconds)
        app.state.activity = ActivityLogger(sink)
        unsubscribe = app.state.sync_bus.subscribe(app.state.activity.on_sync_event)
        await ensure_activity_index()

        monitor: OrphanGrantMonitor | None = None
        if settings.orphan_sweep_enabled:
            if settings.service_token:
                service_store = PermissionApiClient(
                    app.state.http,
                    access_token=settings.service_token,
                    cache=app.state.directory_cache,
                )
                monitor = OrphanGrantMonitor(service_store, activity=app.state.activity)
                monitor.start()
            else:
                logger.warning("Orphan sweep enabled without a service token, not starting it")
        try:
            yield
        finally:
            if monitor is not None:
                await monitor.stop()
            unsubscribe()
            await app.state.sync_bus.drain()
            await app.state.http.aclose()
            if activity_sink is None:
                await sink.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, sink=sink)

    app.include_router(permissions.router, prefix="/permissions", tags=["permissions"])
    app.include_router(directory.router, prefix="/directory", tags=["directory"])

    @app.exception_handler(PermissionsError)
    async def permissions_error_handler(request: Request, exc: PermissionsError) -> JSONResponse:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.user_message})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
