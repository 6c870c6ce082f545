"""Pydantic request/response schemas for the SnapClassify API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from snapclassify.controller import FlowState


class PredictionItem(BaseModel):
    """A single ranked label with its probability."""

    label: str
    probability: float = Field(ge=0.0, le=1.0)


class CapturedImage(BaseModel):
    """The image currently held by the session."""

    uri: str = Field(description="Local file:// URI of the captured image")
    width: int | None = None
    height: int | None = None
    file_name: str | None = None
    mime_type: str | None = None


class StateResponse(BaseModel):
    """Read-only view of the flow controller state."""

    permissions: dict[str, str] = Field(description="Capability -> 'unknown', 'granted' or 'denied'")
    ready: bool
    runtime_status: str = Field(description="'pending', 'loaded' or 'failed'")
    classifier_status: str = Field(description="'pending', 'loaded' or 'failed'")
    custom_model_status: str = Field(description="'pending', 'loaded' or 'failed'")
    session: str = Field(description="'no_image', 'image_captured' or 'predicted'")
    image: CapturedImage | None = None
    predictions: list[PredictionItem]
    can_predict: bool
    can_reset: bool
    load_errors: dict[str, str]
    last_error: str | None = None

    @classmethod
    def from_state(cls, state: FlowState) -> StateResponse:
        image = state.image
        return cls(
            permissions={str(kind): str(decision) for kind, decision in state.permissions.items()},
            ready=state.ready,
            runtime_status=state.runtime_status,
            classifier_status=state.classifier_status,
            custom_model_status=state.custom_model_status,
            session=state.session,
            image=(
                CapturedImage(
                    uri=image.uri,
                    width=image.width,
                    height=image.height,
                    file_name=image.file_name,
                    mime_type=image.mime_type,
                )
                if image is not None
                else None
            ),
            predictions=[PredictionItem(label=p.label, probability=p.probability) for p in state.predictions],
            can_predict=state.can_predict,
            can_reset=state.can_reset,
            load_errors=dict(state.load_errors),
            last_error=state.last_error,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    ready: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
