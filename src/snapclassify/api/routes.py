"""API route definitions.

The three POST controls mirror the app's buttons; ``GET /state`` is the view
they re-render from.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from snapclassify.api.dependencies import get_controller, get_inference_pool, get_model_manager, get_settings
from snapclassify.api.middleware import verify_api_key
from snapclassify.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    StateResponse,
)
from snapclassify.capture import UploadImagePicker
from snapclassify.errors import ActionNotAllowed, CaptureError
from snapclassify.ml.model_manager import MODEL_REGISTRY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


@router.get(
    "/state",
    response_model=StateResponse,
    summary="Current capture/prediction state",
)
async def get_state(request: Request) -> StateResponse:
    """Return permissions, readiness, the current image, and its predictions."""
    return StateResponse.from_state(get_controller(request).state)


@router.post(
    "/take-image",
    response_model=StateResponse,
    responses={
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
    },
    summary="Capture an image",
)
async def take_image(request: Request, file: UploadFile | None = None) -> StateResponse:
    """Store an uploaded photo as the current image.

    Omitting the file (or sending an empty one) is a cancelled capture and
    leaves the state unchanged.
    """
    settings = get_settings(request)
    controller = get_controller(request)

    data = b""
    file_name = None
    if file is not None:
        data = await file.read(settings.max_file_size + 1)
        file_name = file.filename
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"Image exceeds {settings.max_file_size} bytes",
        )

    picker = UploadImagePicker(data, Path(settings.captures_dir), file_name)
    try:
        await controller.take_image(picker)
    except CaptureError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    return StateResponse.from_state(controller.state)


@router.post(
    "/predict",
    response_model=StateResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Classify the current image",
)
async def predict(request: Request) -> StateResponse:
    """Classify the current image; failures are reported in ``last_error``."""
    controller = get_controller(request)
    try:
        await controller.predict()
    except ActionNotAllowed as exc:
        logger.info("Predict rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return StateResponse.from_state(controller.state)


@router.post(
    "/reset",
    response_model=StateResponse,
    summary="Clear the current image and predictions",
)
async def reset(request: Request) -> StateResponse:
    controller = get_controller(request)
    controller.reset()
    return StateResponse.from_state(controller.state)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings(request)
    pool = get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        ready=get_controller(request).state.ready,
        models_loaded=get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available classifiers",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the downloadable classifiers, marking the configured one active."""
    settings = get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=name,
                status="active" if name == settings.classifier_model else "available",
                license=spec.license,
            )
            for name, spec in MODEL_REGISTRY.items()
        ]
    )
