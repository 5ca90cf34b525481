from __future__ import annotations

import logging
import time
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import Response

from jfroffload.config_loader import load_config
from jfroffload.env_loader import load_env_file
from jfroffload.errors import JfrCommandError
from jfroffload.logging_setup import correlation_context, get_access_logger, setup_logging, short_uuid
from jfroffload.services.jfr_control import JfrController
from jfroffload.utils import missing_binaries

LOGGER = logging.getLogger(__name__)
ACCESS_LOGGER = get_access_logger()


class ProfileRequest(BaseModel):
    duration: str = ""
    name: str = ""


class StopRequest(BaseModel):
    name: str = ""


def _envelope(status_code: int, success: bool, message: str, data: Optional[Any] = None) -> JSONResponse:
    content: dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


def create_app(controller: JfrController) -> FastAPI:
    app = FastAPI(title="JFR control sidecar")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        LOGGER.info("Shutdown signal received, stopping started JFR recordings", extra={"category": "API"})
        stopped = controller.stop_started_recordings()
        LOGGER.info("Sidecar shutdown complete stopped_recordings=%s", stopped, extra={"category": "API"})

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_cid = request.headers.get("X-Correlation-Id") or short_uuid()
        start_ts = time.perf_counter()
        with correlation_context(request_cid):
            response: Response = await call_next(request)
            ACCESS_LOGGER.info(
                "HTTP %s %s status=%s duration_ms=%s client=%s",
                request.method,
                request.url.path,
                response.status_code,
                int((time.perf_counter() - start_ts) * 1000),
                request.client.host if request.client else "-",
            )
            response.headers["X-Correlation-Id"] = request_cid
            return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return _envelope(405, False, "Method not allowed")
        return _envelope(exc.status_code, False, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _envelope(400, False, f"Invalid request body: {exc.errors()}")

    @app.exception_handler(JfrCommandError)
    async def jfr_exception_handler(request: Request, exc: JfrCommandError):
        LOGGER.error("JFR command failed path=%s error=%s", request.url.path, exc, extra={"category": "JFR"})
        return _envelope(500, False, str(exc))

    @app.get("/health")
    def health() -> JSONResponse:
        return _envelope(200, True, "API server is healthy")

    @app.post("/create")
    def create_profile(payload: ProfileRequest) -> JSONResponse:
        try:
            data = controller.start_recording(name=payload.name, duration=payload.duration)
        except ValueError as exc:
            return _envelope(400, False, str(exc))
        return _envelope(200, True, "Profiling started successfully", data)

    @app.post("/stop")
    def stop_profile(payload: StopRequest) -> JSONResponse:
        if not payload.name.strip():
            return _envelope(400, False, "Recording name is required")
        data = controller.stop_recording(payload.name)
        return _envelope(200, True, f"JFR recording '{data['name']}' stopped successfully", data)

    @app.get("/running")
    def running_profiles() -> JSONResponse:
        return _envelope(200, True, "JFR recordings retrieved successfully", controller.check_recordings())

    @app.get("/list")
    def list_profiles() -> JSONResponse:
        files = controller.list_artifacts()
        return _envelope(200, True, f"Found {len(files)} profile files", files)

    return app


def build_app() -> FastAPI:
    """uvicorn factory: `uvicorn jfroffload.web.app:build_app --factory`."""
    load_env_file()
    setup_logging()
    cfg = load_config(require_bucket=False)
    missing_binaries(["pgrep", cfg.api.jcmd_binary])
    controller = JfrController(
        root=cfg.pipeline.root,
        source_id=cfg.api.source_id,
        extension=cfg.pipeline.extension,
        jcmd_binary=cfg.api.jcmd_binary,
    )
    LOGGER.info(
        "Sidecar API configured output_dir=%s",
        controller.output_dir,
        extra={"category": "CONFIG"},
    )
    return create_app(controller)
