"""Shared fixtures and fakes for the SnapClassify tests."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from snapclassify.capabilities import Capability, CapabilityGateway, PermissionState
from snapclassify.capture import CaptureAdapter, ImageRef
from snapclassify.config import Settings
from snapclassify.controller import FlowController
from snapclassify.ml.image_classifier import Prediction
from snapclassify.ml.inference import InferencePool
from snapclassify.ml.pipeline import InferencePipeline

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    import numpy as np
    from numpy.typing import NDArray

    from snapclassify.capture import PickerOptions


CAT_AND_DOG = [Prediction(label="cat", probability=0.92), Prediction(label="dog", probability=0.05)]


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/snapclassify_test_models",
        "captures_dir": "/tmp/snapclassify_test_captures",
        "custom_model_path": "/tmp/snapclassify_test_models/custom.onnx",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def jpeg_bytes(width: int = 64, height: int = 48) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buffer, format="JPEG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Fakes for the protocol seams
# ---------------------------------------------------------------------------


class FakeClassifier:
    def __init__(self, predictions: list[Prediction] | None = None, error: Exception | None = None) -> None:
        self.predictions = CAT_AND_DOG if predictions is None else predictions
        self.error = error
        self.calls: list[tuple[int, ...]] = []

    @property
    def model_name(self) -> str:
        return "fake"

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        self.calls.append(image.shape)
        if self.error is not None:
            raise self.error
        return list(self.predictions)


class FakeCustomModel:
    def __init__(self) -> None:
        self.checked = 0

    def self_check(self) -> list[float]:
        self.checked += 1
        return [0.5]


class FakeModelManager:
    def __init__(
        self,
        classifier: FakeClassifier | None = None,
        runtime_error: Exception | None = None,
        classifier_error: Exception | None = None,
        custom_error: Exception | None = None,
    ) -> None:
        self.classifier = classifier or FakeClassifier()
        self.custom_model = FakeCustomModel()
        self.runtime_error = runtime_error
        self.classifier_error = classifier_error
        self.custom_error = custom_error
        self.runtime_calls = 0
        self.shut_down = False

    def init_runtime(self) -> None:
        self.runtime_calls += 1
        if self.runtime_error is not None:
            raise self.runtime_error

    def load_classifier(self) -> FakeClassifier:
        if self.classifier_error is not None:
            raise self.classifier_error
        return self.classifier

    def load_custom_model(self) -> FakeCustomModel:
        if self.custom_error is not None:
            raise self.custom_error
        return self.custom_model

    def get_loaded_models(self) -> list[str]:
        return ["fake"]

    def shutdown(self) -> None:
        self.shut_down = True


class FakePrompt:
    def __init__(self, decisions: dict[Capability, PermissionState] | None = None) -> None:
        self.decisions = decisions or {}
        self.prompted: list[Capability] = []

    async def prompt(self, kind: Capability) -> PermissionState:
        self.prompted.append(kind)
        return self.decisions.get(kind, PermissionState.GRANTED)


class FakePicker:
    """Returns a fixed result; None means the user cancelled."""

    def __init__(self, result: ImageRef | None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.launched = 0

    async def launch(self, options: PickerOptions) -> ImageRef | None:
        self.launched += 1
        if self.error is not None:
            raise self.error
        return self.result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return make_settings(captures_dir=str(tmp_path / "captures"), models_dir=str(tmp_path / "models"))


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def pixel_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    """Lower Pillow's bomb threshold so a 64x48 image counts as a decompression bomb."""
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)


@pytest.fixture()
def image_file(tmp_path: Path) -> Path:
    path = tmp_path / "a.jpg"
    path.write_bytes(jpeg_bytes())
    return path


@pytest.fixture()
def image_ref(image_file: Path) -> ImageRef:
    return ImageRef(uri=image_file.as_uri())


def build_controller(
    pool: InferencePool,
    model_manager: FakeModelManager | None = None,
    prompt: FakePrompt | None = None,
    captures_dir: Path | None = None,
) -> FlowController:
    gateway = CapabilityGateway(prompt or FakePrompt())
    return FlowController(
        model_manager=model_manager or FakeModelManager(),
        gateway=gateway,
        capture_adapter=CaptureAdapter(gateway),
        pipeline=InferencePipeline(pool),
        pool=pool,
        captures_dir=captures_dir,
    )
