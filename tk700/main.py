from contextlib import asynccontextmanager
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from tk700.core.config import Settings, get_settings
from tk700.dependencies import check_projector_health, cleanup_services
from tk700.exceptions.projector import (
    ProjectorException, general_exception_handler, projector_exception_handler, validation_exception_handler,
)
from tk700.routers import projector
from tk700.services.device_link import DeviceLink
from tk700.services.poller import ProjectorMonitor
from tk700.services.power_state import PowerStateManager
from tk700.services.projector_client import ProjectorClient

log = logging.getLogger("tk700.main")

VERSION = "0.1.0"


def _mount_frontend(app: FastAPI, static_dir: str) -> None:
    root = Path(static_dir)
    if not root.is_dir():
        log.info("No front-end at %s, serving API only", root)
        return
    index = root / "index.html"

    # SPA fallback: any non-API path serves a file if it exists, else index.html
    @app.get("/{path:path}", include_in_schema=False)
    async def frontend(path: str):
        candidate = (root / path).resolve()
        if path and candidate.is_file() and root.resolve() in candidate.parents:
            return FileResponse(candidate)
        return FileResponse(index)


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[ProjectorClient] = None,
    power: Optional[PowerStateManager] = None,
    start_polling: bool = True,
) -> FastAPI:
    """
    Build the application. Raises ConfigurationError when the projector
    address is missing. ``client``/``power`` may be supplied (tests, tools);
    otherwise they are built from settings.
    """
    settings = settings or get_settings()
    if client is None:
        client = ProjectorClient(DeviceLink(
            settings.TK700_HOST,
            settings.TK700_PORT,
            timeout_ms=settings.TK700_TIMEOUT,
            connect_timeout_ms=settings.TK700_CONNECT_TIMEOUT,
        ))
    power = power or PowerStateManager()
    monitor = ProjectorMonitor(client, power, settings.POLL_INTERVAL_SEC)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_polling:
            monitor.start()
        log.info("TK700 Control Server started (projector %s:%s)", settings.TK700_HOST, settings.TK700_PORT)
        yield
        log.info("Application shutdown - cleaning up services")
        await cleanup_services(app.state)

    app = FastAPI(
        title=settings.APP_NAME,
        version=VERSION,
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.projector = client
    app.state.power = power
    app.state.monitor = monitor

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    app.add_exception_handler(ProjectorException, projector_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(projector.router, prefix="/api")

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "services": {"projector": check_projector_health(client, power)},
            "version": VERSION,
        }

    # last, so the catch-all route never shadows /api or /health
    _mount_frontend(app, settings.STATIC_DIR)
    return app
