"""Tests for the inference pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from conftest import CAT_AND_DOG, FakeClassifier

from snapclassify.capture import ImageRef
from snapclassify.errors import InferenceError
from snapclassify.ml.image_classifier import Prediction
from snapclassify.ml.pipeline import InferencePipeline

if TYPE_CHECKING:
    from pathlib import Path

    from snapclassify.ml.inference import InferencePool


class TestInferencePipeline:
    async def test_returns_classifier_output_unchanged(self, pool: InferencePool, image_ref: ImageRef) -> None:
        classifier = FakeClassifier()

        predictions = await InferencePipeline(pool).classify(image_ref, classifier)

        assert predictions == CAT_AND_DOG
        assert classifier.calls == [(48, 64, 3)]

    async def test_order_and_length_are_not_changed(self, pool: InferencePool, image_ref: ImageRef) -> None:
        unsorted = [Prediction("low", 0.1), Prediction("high", 0.8), Prediction("mid", 0.1), Prediction("x", 0.0)]
        predictions = await InferencePipeline(pool).classify(image_ref, FakeClassifier(unsorted))
        assert predictions == unsorted

    async def test_missing_file_raises_inference_error(self, pool: InferencePool, tmp_path: Path) -> None:
        ref = ImageRef(uri=(tmp_path / "gone.jpg").as_uri())
        with pytest.raises(InferenceError, match="Cannot read image"):
            await InferencePipeline(pool).classify(ref, FakeClassifier())

    async def test_corrupt_file_raises_inference_error(self, pool: InferencePool, tmp_path: Path) -> None:
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"\x00\x01 not an image")
        classifier = FakeClassifier()

        with pytest.raises(InferenceError, match="Cannot decode image"):
            await InferencePipeline(pool).classify(ImageRef(uri=path.as_uri()), classifier)
        assert classifier.calls == []

    @pytest.mark.usefixtures("pixel_limit")
    async def test_decompression_bomb_raises_inference_error(self, pool: InferencePool, image_ref: ImageRef) -> None:
        classifier = FakeClassifier()

        with pytest.raises(InferenceError, match="Cannot decode image"):
            await InferencePipeline(pool).classify(image_ref, classifier)
        assert classifier.calls == []

    async def test_invalid_base64_raises_inference_error(self, pool: InferencePool, image_ref: ImageRef) -> None:
        with (
            patch("snapclassify.ml.pipeline.read_as_base64", return_value="not base64!!"),
            pytest.raises(InferenceError, match="Invalid base64"),
        ):
            await InferencePipeline(pool).classify(image_ref, FakeClassifier())

    async def test_blocking_steps_run_on_the_pool(self, pool: InferencePool, image_ref: ImageRef) -> None:
        steps: list[str] = []
        run = pool.run

        async def recording_run(func, *args):  # type: ignore[no-untyped-def]
            steps.append(func.__name__)
            return await run(func, *args)

        with patch.object(pool, "run", recording_run):
            await InferencePipeline(pool).classify(image_ref, FakeClassifier())

        assert steps == ["read_as_base64", "decode_base64", "decode_image", "classify"]

    async def test_classifier_failure_raises_inference_error(self, pool: InferencePool, image_ref: ImageRef) -> None:
        classifier = FakeClassifier(error=RuntimeError("session exploded"))

        with pytest.raises(InferenceError, match="session exploded") as excinfo:
            await InferencePipeline(pool).classify(image_ref, classifier)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
