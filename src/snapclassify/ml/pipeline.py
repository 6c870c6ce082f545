"""Inference pipeline: captured image reference -> ranked predictions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from snapclassify.errors import InferenceError
from snapclassify.ml.preprocessing import decode_base64, decode_image, read_as_base64

if TYPE_CHECKING:
    from snapclassify.capture import ImageRef
    from snapclassify.ml.image_classifier import ImageClassifier, Prediction
    from snapclassify.ml.inference import InferencePool

logger = logging.getLogger(__name__)


class InferencePipeline:
    """Reads, decodes, and classifies one captured image at a time."""

    def __init__(self, pool: InferencePool) -> None:
        self._pool = pool

    async def classify(self, image_ref: ImageRef, classifier: ImageClassifier) -> list[Prediction]:
        """Classify the image at ``image_ref``.

        The steps run strictly in sequence; either the classifier's full list
        is returned or ``InferenceError`` is raised.

        Raises:
            InferenceError: If the image cannot be read or decoded, or the
                classifier fails.
        """
        try:
            encoded = await self._pool.run(read_as_base64, image_ref.uri)
        except (OSError, ValueError) as exc:
            raise InferenceError(f"Cannot read image {image_ref.uri}: {exc}") from exc

        try:
            raw = await self._pool.run(decode_base64, encoded)
            image = await self._pool.run(decode_image, raw)
        except ValueError as exc:
            raise InferenceError(f"Cannot decode image {image_ref.uri}: {exc}") from exc

        try:
            predictions = await self._pool.run(classifier.classify, image)
        except Exception as exc:
            raise InferenceError(f"Classifier {classifier.model_name} failed: {exc}") from exc

        logger.debug("Classified %s into %d predictions", image_ref.uri, len(predictions))
        return list(predictions)
