"""FastAPI dependencies resolving objects stored on ``app.state``."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from snapclassify.config import Settings
    from snapclassify.controller import FlowController
    from snapclassify.ml.inference import InferencePool
    from snapclassify.ml.model_manager import ModelManager


def get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def get_controller(request: Request) -> FlowController:
    controller: FlowController = request.app.state.controller
    return controller
