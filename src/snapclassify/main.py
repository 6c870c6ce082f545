"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from snapclassify.config import Settings
    from snapclassify.ml.model_manager import ModelManager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snapclassify.api.routes import router
from snapclassify.capabilities import CapabilityGateway, SettingsPermissionPrompt
from snapclassify.capture import CaptureAdapter, PickerOptions
from snapclassify.config import get_settings
from snapclassify.controller import FlowController
from snapclassify.ml.inference import InferencePool
from snapclassify.ml.model_manager import OnnxModelManager
from snapclassify.ml.pipeline import InferencePipeline

logger = logging.getLogger(__name__)


def build_controller(
    settings: Settings,
    pool: InferencePool,
    model_manager: ModelManager,
) -> FlowController:
    """Wire the gateway, capture adapter, and pipeline into a controller."""
    gateway = CapabilityGateway(SettingsPermissionPrompt(settings.granted_capabilities))
    capture_adapter = CaptureAdapter(
        gateway,
        PickerOptions(
            media_type="photo",
            include_base64=False,
            max_width=settings.thumbnail_max_width,
            max_height=settings.thumbnail_max_height,
        ),
    )
    return FlowController(
        model_manager=model_manager,
        gateway=gateway,
        capture_adapter=capture_adapter,
        pipeline=InferencePipeline(pool),
        pool=pool,
        captures_dir=Path(settings.captures_dir),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start loading models on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting SnapClassify (device=%s, max_concurrent=%s, classifier=%s)",
        settings.device,
        settings.max_concurrent,
        settings.classifier_model,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    controller = build_controller(settings, inference_pool, model_manager)
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.controller = controller

    # Models load in the background; /state reports readiness.
    controller.start()
    logger.info("SnapClassify accepting requests")
    yield

    logger.info("Shutting down SnapClassify")
    await controller.shutdown()
    inference_pool.shutdown()
    logger.info("SnapClassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="SnapClassify",
        description="Capture a photo and classify it with a pretrained image classifier",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("snapclassify.main:app", host=settings.host, port=settings.port)
