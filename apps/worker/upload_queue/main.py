"""FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from upload_queue.core.config import get_settings
from upload_queue.errors import ApiError
from upload_queue.routes import uploads_router
from upload_queue.runtime import QueueRuntime, build_runtime

logger = logging.getLogger(__name__)


def create_app(runtime: QueueRuntime | None = None, *, autostart: bool | None = None) -> FastAPI:
    """Build the ingress app.

    Without an explicit ``runtime`` one is built from settings at startup and
    closed at shutdown. The processor starts with the app when ``autostart``
    (default: ``processor_autostart``) is enabled.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.runtime is None
        if owned:
            app.state.runtime = build_runtime(get_settings())
        should_start = autostart if autostart is not None else get_settings().processor_autostart
        logger.info("app.startup owned_runtime=%s processor_autostart=%s", owned, should_start)
        if should_start:
            app.state.runtime.processor.start()
        try:
            yield
        finally:
            app.state.runtime.processor.stop()
            logger.info("app.shutdown owned_runtime=%s", owned)
            if owned:
                app.state.runtime.close()
                app.state.runtime = None

    app = FastAPI(title="Upload Queue", version="1.0.0", lifespan=lifespan)
    app.state.runtime = runtime

    @app.exception_handler(ApiError)
    async def handle_api_error(_, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload.model_dump(mode="json", exclude_none=True),
        )

    app.include_router(uploads_router, prefix="/api/v1")
    return app


app = create_app()
