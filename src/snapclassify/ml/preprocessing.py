"""Image preprocessing pipeline.

Reads captured images from the local file system as base64 text, decodes
them into HxWx3 RGB uint8 arrays, and converts those arrays into the
normalized NCHW float tensors the classifiers expect.
"""

from __future__ import annotations

import base64
import binascii
import io
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


def uri_to_path(uri: str) -> Path:
    """Resolve a ``file://`` URI (or a bare path) to a local path."""
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if not parsed.scheme:
        return Path(uri)
    raise ValueError(f"Unsupported image URI scheme: {parsed.scheme}")


def read_as_base64(uri: str) -> str:
    """Read the resource at ``uri`` and return its bytes as base64 text.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the URI scheme is not a local one.
    """
    return base64.b64encode(uri_to_path(uri).read_bytes()).decode("ascii")


def decode_base64(text: str) -> bytes:
    """Decode base64 text into raw bytes.

    Raises:
        ValueError: If the text is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 image data: {exc}") from exc


def decode_image(image_bytes: bytes) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            return np.asarray(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc


class ImagePreprocessor:
    """Resizes, center-crops, and normalizes images for classification."""

    def __init__(
        self,
        resize_size: int,
        crop_size: int,
        mean: Sequence[float],
        std: Sequence[float],
    ) -> None:
        self.resize_size = resize_size
        self.crop_size = crop_size
        self._mean = np.asarray(mean, dtype=np.float32).reshape(1, 1, 3)
        self._std = np.asarray(std, dtype=np.float32).reshape(1, 1, 3)

    def preprocess_for_classification(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Prepare an image for the classification model.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            1x3xCxC float32 tensor, where C is the crop size.
        """
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected an HxWx3 image, got shape {image.shape}")

        pil = Image.fromarray(image)
        scale = self.resize_size / min(pil.width, pil.height)
        resized = pil.resize(
            (max(self.crop_size, round(pil.width * scale)), max(self.crop_size, round(pil.height * scale))),
            Image.Resampling.BILINEAR,
        )

        left = (resized.width - self.crop_size) // 2
        top = (resized.height - self.crop_size) // 2
        cropped = resized.crop((left, top, left + self.crop_size, top + self.crop_size))

        pixels = np.asarray(cropped, dtype=np.float32) / 255.0
        pixels = (pixels - self._mean) / self._std
        return np.ascontiguousarray(pixels.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)
