"""Image classification models.

Wraps ONNX classifiers that map an RGB image to ranked (label, probability)
pairs, plus the bundled custom model that is only ever self-checked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from snapclassify.ml.preprocessing import ImagePreprocessor


@dataclass(frozen=True)
class Prediction:
    """A single classification prediction."""

    label: str
    probability: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        """Classify an image and return ranked labels.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of predictions sorted by probability (descending).
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


class OnnxImageClassifier:
    """Pretrained ONNX classifier with a fixed label set."""

    def __init__(
        self,
        name: str,
        session: InferenceSession,
        labels: list[str],
        preprocessor: ImagePreprocessor,
        top_k: int,
    ) -> None:
        self._name = name
        self._session = session
        self._labels = labels
        self._preprocessor = preprocessor
        self._top_k = top_k
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._name

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        tensor = self._preprocessor.preprocess_for_classification(image)
        logits = self._session.run(None, {self._input_name: tensor})[0]
        probabilities = softmax(np.asarray(logits, dtype=np.float32).reshape(-1))

        if probabilities.shape[0] != len(self._labels):
            raise ValueError(
                f"Model {self._name} produced {probabilities.shape[0]} scores for {len(self._labels)} labels"
            )

        top_k = min(self._top_k, probabilities.shape[0])
        # Stable sort keeps label order among equal probabilities.
        ranked = np.argsort(-probabilities, kind="stable")[:top_k]
        return [Prediction(label=self._labels[i], probability=float(probabilities[i])) for i in ranked]


class CustomModel:
    """The bundled model; loaded once and exercised by a self-check only."""

    def __init__(self, session: InferenceSession, input_shape: list[int]) -> None:
        self._session = session
        self._input_shape = tuple(input_shape)
        self._input_name = session.get_inputs()[0].name

    def self_check(self) -> list[float]:
        """Run the model on an all-ones input and return the first output row."""
        feature = np.ones(self._input_shape, dtype=np.float32)
        outputs = self._session.run(None, {self._input_name: feature})
        return np.asarray(outputs[0], dtype=np.float32)[0].reshape(-1).tolist()
