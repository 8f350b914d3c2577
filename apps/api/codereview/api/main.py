"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from codereview.api.routes import router
from codereview.config import Settings, get_settings
from codereview.database.store import Stores
from codereview.errors import CodeReviewError, classify_error, http_status_for
from codereview.pipeline.queue import JobQueue
from codereview.schemas import ErrorResponse


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def code_review_error_handler(request: Request, exc: CodeReviewError) -> JSONResponse:
    info = classify_error(exc)
    logger.warning(f"{request.method} {request.url.path} failed with {info.type}: {exc}")
    body = ErrorResponse(type=info.type, user_message=info.user_message, suggestion=info.suggestion)
    return JSONResponse(status_code=http_status_for(info.type), content=body.to_json_dict())


def create_app(
    settings: Settings | None = None,
    stores_factory: Callable[[], Awaitable[Stores]] | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        stores_factory: Coroutine factory for the record stores (defaults to
            the SQL store at ``settings.database_url``)
    """
    settings = settings or get_settings()

    async def open_stores() -> Stores:
        if stores_factory is not None:
            return await stores_factory()
        return await Stores.connect(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        for directory in (settings.upload_dir, settings.work_dir, settings.artifacts_dir):
            directory.mkdir(parents=True, exist_ok=True)

        stores = await open_stores()
        queue = JobQueue(settings, stores)
        queue.start()
        app.state.stores = stores
        app.state.queue = queue

        yield

        # Shutdown
        logger.info("Shutting down...")
        await queue.stop()
        await stores.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Automated review pipeline for student code submissions",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CodeReviewError, code_review_error_handler)
    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "codereview.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
