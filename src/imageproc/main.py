"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from imageproc.api.routes import health_router, router
from imageproc.config import Settings, get_settings
from imageproc.imaging.codec import PillowCodec
from imageproc.imaging.naming import PathResolver
from imageproc.imaging.pipeline import ImageProcessor
from imageproc.imaging.pool import ProcessingPool
from imageproc.imaging.registry import build_default_registry
from imageproc.imaging.staging import UploadStaging
from imageproc.imaging.storage import ensure_directory

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the pipeline components and attach them to ``app.state``."""
    registry = build_default_registry()
    codec = PillowCodec()
    resolver = PathResolver(settings.upload_dir, settings.output_dir, settings.default_format)

    app.state.settings = settings
    app.state.registry = registry
    app.state.codec = codec
    app.state.staging = UploadStaging(settings.upload_dir)
    app.state.processor = ImageProcessor(resolver, registry, codec)
    app.state.processing_pool = ProcessingPool(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings: Settings = app.state.settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    ensure_directory(settings.upload_dir)
    ensure_directory(settings.output_dir)
    init_state(app, settings)

    logger.info(
        "Starting imageproc (media_root=%s, format=%s, max_concurrent=%s, types=%s)",
        settings.media_root,
        settings.default_format,
        settings.max_concurrent,
        ",".join(app.state.registry.type_ids()),
    )
    logger.info("Public URLs rooted at %s", settings.public_base_url)
    yield

    logger.info("Shutting down imageproc")
    app.state.processing_pool.shutdown()
    logger.info("imageproc shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    application = FastAPI(
        title="imageproc",
        description="Image upload, canonical conversion, variant generation and cropping",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    application.include_router(health_router)
    # Mounted after the router so /images/upload and /images/crop win.
    application.mount(
        "/images",
        StaticFiles(directory=settings.media_root, check_dir=False),
        name="images",
    )
    return application


def run() -> None:
    """Serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


app = create_app()
