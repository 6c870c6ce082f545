"""Orchestration flow controller.

Sequences capability checks, model loading, capture and inference in
response to user actions and owns the single state bundle the view reads.

Two status axes combine into the observable state:

    readiness: not ready -> ready (runtime initialized and classifier loaded)
    session:   no_image -> image_captured -> predicted

All mutations happen on the event loop; blocking work runs on the worker
pool and only its result is applied here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from snapclassify.capabilities import Capability, PermissionState
from snapclassify.errors import ActionNotAllowed, InferenceError
from snapclassify.ml.preprocessing import uri_to_path

if TYPE_CHECKING:
    from pathlib import Path

    from snapclassify.capabilities import CapabilityGateway
    from snapclassify.capture import CaptureAdapter, ImagePicker, ImageRef
    from snapclassify.ml.image_classifier import CustomModel, ImageClassifier, Prediction
    from snapclassify.ml.inference import InferencePool
    from snapclassify.ml.model_manager import ModelManager
    from snapclassify.ml.pipeline import InferencePipeline

logger = logging.getLogger(__name__)


class LoadStatus(StrEnum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


class SessionStatus(StrEnum):
    NO_IMAGE = "no_image"
    IMAGE_CAPTURED = "image_captured"
    PREDICTED = "predicted"


@dataclass
class FlowState:
    """Everything the view can observe."""

    permissions: dict[Capability, PermissionState] = field(
        default_factory=lambda: {kind: PermissionState.UNKNOWN for kind in Capability}
    )
    runtime_ready: bool = False
    runtime_status: LoadStatus = LoadStatus.PENDING
    classifier_status: LoadStatus = LoadStatus.PENDING
    custom_model_status: LoadStatus = LoadStatus.PENDING
    classifier: ImageClassifier | None = None
    custom_model: CustomModel | None = None
    image: ImageRef | None = None
    predictions: list[Prediction] = field(default_factory=list)
    load_errors: dict[str, str] = field(default_factory=dict)
    last_error: str | None = None

    @property
    def ready(self) -> bool:
        return self.runtime_ready and self.classifier is not None

    @property
    def session(self) -> SessionStatus:
        if self.image is None:
            return SessionStatus.NO_IMAGE
        if self.predictions:
            return SessionStatus.PREDICTED
        return SessionStatus.IMAGE_CAPTURED

    @property
    def can_predict(self) -> bool:
        return self.ready and self.image is not None

    @property
    def can_reset(self) -> bool:
        return self.ready and self.image is not None


class FlowController:
    """Drives the capture/predict/reset flow and owns its ``FlowState``."""

    def __init__(
        self,
        model_manager: ModelManager,
        gateway: CapabilityGateway,
        capture_adapter: CaptureAdapter,
        pipeline: InferencePipeline,
        pool: InferencePool,
        captures_dir: Path | None = None,
    ) -> None:
        self._models = model_manager
        self._gateway = gateway
        self._capture = capture_adapter
        self._pipeline = pipeline
        self._pool = pool
        # Superseded captures under this directory are deleted.
        self._captures_dir = captures_dir.resolve() if captures_dir is not None else None

        self.state = FlowState()
        self._runtime_done = asyncio.Event()
        self._startup_tasks: list[asyncio.Task[None]] = []

    # -- Startup ------------------------------------------------------------

    def start(self) -> list[asyncio.Task[None]]:
        """Schedule the four independent startup tasks and return them.

        Each task updates its own slice of state when it finishes; none waits
        for another, except that the custom-model self-check waits for the
        runtime to be initialized.
        """
        if self._startup_tasks:
            return self._startup_tasks

        self._startup_tasks = [
            asyncio.create_task(self._init_runtime(), name="init-runtime"),
            asyncio.create_task(self._request_camera(), name="request-camera"),
            asyncio.create_task(self._load_classifier(), name="load-classifier"),
            asyncio.create_task(self._load_custom_model(), name="load-custom-model"),
        ]
        return self._startup_tasks

    async def wait_started(self) -> None:
        """Wait until every startup task has finished, successfully or not."""
        await asyncio.gather(*self.start())

    async def _init_runtime(self) -> None:
        try:
            await self._pool.run(self._models.init_runtime)
        except Exception as exc:
            self.state.runtime_status = LoadStatus.FAILED
            self.state.load_errors["runtime"] = str(exc)
            logger.exception("Runtime initialization failed")
        else:
            self.state.runtime_ready = True
            self.state.runtime_status = LoadStatus.LOADED
            logger.info("Runtime ready")
        finally:
            self._runtime_done.set()

    async def _request_camera(self) -> None:
        decision = await self._gateway.request(Capability.CAMERA)
        self.state.permissions[Capability.CAMERA] = decision

    async def _load_classifier(self) -> None:
        try:
            classifier = await self._pool.run(self._models.load_classifier)
        except Exception as exc:
            self.state.classifier_status = LoadStatus.FAILED
            self.state.load_errors["classifier"] = str(exc)
            logger.exception("Classifier failed to load; predict stays disabled")
            return
        self.state.classifier = classifier
        self.state.classifier_status = LoadStatus.LOADED
        logger.info("Classifier %s loaded", classifier.model_name)

    async def _load_custom_model(self) -> None:
        try:
            model = await self._pool.run(self._models.load_custom_model)
            self.state.custom_model = model
            self.state.custom_model_status = LoadStatus.LOADED

            await self._runtime_done.wait()
            if not self.state.runtime_ready:
                logger.warning("Skipping bundled model self-check: runtime not ready")
                return
            response = await self._pool.run(model.self_check)
            logger.info("Bundled model self-check output: %s", response)
        except Exception as exc:
            if self.state.custom_model is None:
                self.state.custom_model_status = LoadStatus.FAILED
            self.state.load_errors["custom_model"] = str(exc)
            logger.exception("Bundled model load or self-check failed")

    # -- User actions -------------------------------------------------------

    async def take_image(self, picker: ImagePicker) -> ImageRef | None:
        """Capture a new image, replacing the current one and its predictions."""
        try:
            image_ref = await self._capture.capture(picker)
        finally:
            # The gateway may have recorded a decision even if the picker failed.
            self.state.permissions.update(self._gateway.snapshot())
        if image_ref is None:
            return None

        self._discard_capture(self.state.image)
        self.state.image = image_ref
        self.state.predictions = []
        self.state.last_error = None
        return image_ref

    async def predict(self) -> list[Prediction] | None:
        """Classify the current image.

        Returns the new predictions, or None if classification failed or the
        image changed while it was running.

        Raises:
            ActionNotAllowed: If not ready or no image has been captured.
        """
        target = self.state.image
        classifier = self.state.classifier
        if not self.state.runtime_ready or classifier is None or target is None:
            raise ActionNotAllowed("Predict requires a loaded classifier and a captured image")

        try:
            predictions = await self._pipeline.classify(target, classifier)
        except InferenceError as exc:
            if self.state.image is target:
                self.state.last_error = str(exc)
            logger.exception("Prediction failed for %s", target.uri)
            return None

        if self.state.image is not target:
            logger.warning("Discarding stale predictions for %s", target.uri)
            return None

        self.state.predictions = predictions
        self.state.last_error = None
        return predictions

    def reset(self) -> None:
        """Clear the current image and predictions."""
        self._discard_capture(self.state.image)
        self.state.image = None
        self.state.predictions = []
        self.state.last_error = None

    def _discard_capture(self, image_ref: ImageRef | None) -> None:
        if image_ref is None or self._captures_dir is None:
            return
        try:
            path = uri_to_path(image_ref.uri).resolve()
        except ValueError:
            return
        if not path.is_relative_to(self._captures_dir):
            return
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not delete superseded capture %s", path, exc_info=True)
        else:
            logger.debug("Deleted superseded capture %s", path)

    # -- Lifecycle ----------------------------------------------------------

    async def shutdown(self) -> None:
        for task in self._startup_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._startup_tasks, return_exceptions=True)
        self._models.shutdown()
