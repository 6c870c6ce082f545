"""Model manager: initialize the runtime, download, load, and cache ONNX models.

Handles checking ONNX Runtime execution providers, downloading the pretrained
classifier from HuggingFace, loading the bundled custom model, and caching
both handles for the lifetime of the process.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import onnxruntime
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from snapclassify.errors import ModelLoadError
from snapclassify.ml.image_classifier import CustomModel, OnnxImageClassifier
from snapclassify.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from snapclassify.config import Settings
    from snapclassify.ml.image_classifier import ImageClassifier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def init_runtime(self) -> None:
        """Prepare the numeric runtime; must finish before the custom self-check."""
        ...

    def load_classifier(self) -> ImageClassifier:
        """Return the cached or newly loaded pretrained classifier."""
        ...

    def load_custom_model(self) -> CustomModel:
        """Return the cached or newly loaded bundled model."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Drop all cached models."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

CUSTOM_MODEL_NAME = "custom"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a downloadable ONNX classifier."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    labels_filename: str
    resize_size: int
    crop_size: int
    mean: tuple[float, float, float]
    std: tuple[float, float, float]
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "mobilenet_v2": ModelSpec(
        name="mobilenet_v2",
        repo_id="Xenova/mobilenet_v2_1.0_224",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        resize_size=256,
        crop_size=224,
        mean=(0.5, 0.5, 0.5),
        std=(0.5, 0.5, 0.5),
        license="Apache-2.0",
    ),
    "mobilenet_v1": ModelSpec(
        name="mobilenet_v1",
        repo_id="Xenova/mobilenet_v1_1.0_224",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        resize_size=256,
        crop_size=224,
        mean=(0.5, 0.5, 0.5),
        std=(0.5, 0.5, 0.5),
        license="Apache-2.0",
    ),
    "resnet_50": ModelSpec(
        name="resnet_50",
        repo_id="Xenova/resnet-50",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        resize_size=256,
        crop_size=224,
        mean=IMAGENET_MEAN,
        std=IMAGENET_STD,
        license="Apache-2.0",
    ),
}


def load_labels(path: Path) -> list[str]:
    """Read class labels from a HuggingFace ``config.json`` or a plain text file.

    ``config.json`` labels come from its ``id2label`` mapping, ordered by id.
    Any other file is read as one label per line.
    """
    if path.suffix == ".json":
        config = json.loads(path.read_text(encoding="utf-8"))
        id2label = config.get("id2label")
        if not id2label:
            raise ValueError(f"No id2label mapping in {path}")
        return [id2label[key] for key in sorted(id2label, key=int)]
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Initializes ONNX Runtime, then loads and caches the classifier and bundled model."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._classifier: OnnxImageClassifier | None = None
        self._custom_model: CustomModel | None = None
        self._runtime_ready = False

        self._providers = self._build_providers()
        self._session_options: SessionOptions | None = None

    # -- Public API ---------------------------------------------------------

    @property
    def runtime_ready(self) -> bool:
        return self._runtime_ready

    def init_runtime(self) -> None:
        """Check the configured execution providers and build session options."""
        if self._runtime_ready:
            return

        available = set(onnxruntime.get_available_providers())
        usable = [p for p in self._providers if self._provider_name(p) in available]
        if not usable:
            raise ModelLoadError(f"None of the execution providers {self._provider_names()} are available")
        if len(usable) < len(self._providers):
            logger.warning(
                "Execution providers %s unavailable, falling back to %s",
                [n for n in self._provider_names() if n not in available],
                [self._provider_name(p) for p in usable],
            )

        with self._lock:
            self._providers = usable
            self._session_options = self._build_session_options()
            self._runtime_ready = True
        logger.info("ONNX Runtime %s ready (providers=%s)", onnxruntime.__version__, self._provider_names())

    def ensure_downloaded(self, model_name: str) -> tuple[Path, Path]:
        """Download a classifier and its labels from HuggingFace if not present locally."""
        spec = self._get_spec(model_name)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        local_dir = str(self._models_dir / spec.name)

        model_path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=local_dir,
            )
        )
        labels_path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.labels_filename,
                local_dir=local_dir,
            )
        )
        logger.info("Model %s available at %s", model_name, model_path)
        return model_path, labels_path

    def load_classifier(self) -> OnnxImageClassifier:
        """Return the cached classifier, downloading and loading it on first use."""
        with self._lock:
            if self._classifier is not None:
                return self._classifier

        name = self._settings.classifier_model
        try:
            spec = self._get_spec(name)
            model_path, labels_path = self.ensure_downloaded(name)
            labels = load_labels(labels_path)
            session = self._create_session(model_path)
        except ModelLoadError:
            raise
        except Exception as exc:
            raise ModelLoadError(f"Failed to load classifier {name}: {exc}") from exc

        classifier = OnnxImageClassifier(
            name=name,
            session=session,
            labels=labels,
            preprocessor=ImagePreprocessor(spec.resize_size, spec.crop_size, spec.mean, spec.std),
            top_k=self._settings.top_k,
        )

        with self._lock:
            # Double-check: another thread may have loaded it meanwhile.
            if self._classifier is not None:
                return self._classifier
            self._classifier = classifier
            logger.info("Loaded classifier %s (%d labels)", name, len(labels))
            return classifier

    def load_custom_model(self) -> CustomModel:
        """Return the cached bundled model, loading it on first use."""
        with self._lock:
            if self._custom_model is not None:
                return self._custom_model

        path = Path(self._settings.custom_model_path)
        if not path.is_file():
            raise ModelLoadError(f"Bundled model not found: {path}")
        try:
            session = self._create_session(path)
        except Exception as exc:
            raise ModelLoadError(f"Failed to load bundled model {path}: {exc}") from exc

        model = CustomModel(session, self._settings.custom_model_input_shape)
        with self._lock:
            if self._custom_model is not None:
                return self._custom_model
            self._custom_model = model
            logger.info("Loaded bundled model from %s", path)
            return model

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            loaded = []
            if self._classifier is not None:
                loaded.append(self._classifier.model_name)
            if self._custom_model is not None:
                loaded.append(CUSTOM_MODEL_NAME)
            return loaded

    def shutdown(self) -> None:
        """Drop all cached models."""
        with self._lock:
            self._classifier = None
            self._custom_model = None
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise ModelLoadError(f"Unknown model: {model_name}") from None

    @staticmethod
    def _provider_name(provider: str | tuple[str, dict[str, object]]) -> str:
        return provider if isinstance(provider, str) else provider[0]

    def _provider_names(self) -> list[str]:
        return [self._provider_name(p) for p in self._providers]

    def _create_session(self, model_path: Path) -> InferenceSession:
        with self._lock:
            if self._session_options is None:
                self._session_options = self._build_session_options()
            options = self._session_options
            providers = list(self._providers)
        return InferenceSession(str(model_path), sess_options=options, providers=providers)

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
