"""Capture adapter: wraps the image picker behind the storage capability."""

from __future__ import annotations

import io
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from snapclassify.capabilities import Capability, PermissionState
from snapclassify.errors import CaptureError

if TYPE_CHECKING:
    from snapclassify.capabilities import CapabilityGateway

logger = logging.getLogger(__name__)

REQUIRED_CAPABILITIES = (Capability.CAMERA, Capability.WRITE_STORAGE)


@dataclass(frozen=True)
class PickerOptions:
    """Fixed options the picker is launched with."""

    media_type: str = "photo"
    include_base64: bool = False
    max_width: int = 200
    max_height: int = 200


@dataclass(frozen=True)
class ImageRef:
    """Reference to a captured image on the local file system."""

    uri: str
    width: int | None = None
    height: int | None = None
    file_name: str | None = None
    mime_type: str | None = None


class ImagePicker(Protocol):
    """Protocol for the platform image picker."""

    async def launch(self, options: PickerOptions) -> ImageRef | None:
        """Show the picker; return the captured image, or None if cancelled."""
        ...


class UploadImagePicker:
    """Picker backed by an uploaded file; an empty upload is a cancel."""

    def __init__(self, data: bytes, captures_dir: Path, file_name: str | None = None) -> None:
        self._data = data
        self._captures_dir = captures_dir
        self._file_name = file_name

    async def launch(self, options: PickerOptions) -> ImageRef | None:
        if not self._data:
            return None
        if options.media_type != "photo":
            raise CaptureError(f"Unsupported media type: {options.media_type}")

        try:
            with Image.open(io.BytesIO(self._data)) as img:
                img = ImageOps.exif_transpose(img).convert("RGB")
                img.thumbnail((options.max_width, options.max_height))
                self._captures_dir.mkdir(parents=True, exist_ok=True)
                path = self._captures_dir / f"{uuid.uuid4().hex}.jpg"
                img.save(path, format="JPEG")
                width, height = img.size
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise CaptureError(f"Uploaded file is not a valid image: {exc}") from exc

        return ImageRef(
            uri=path.resolve().as_uri(),
            width=width,
            height=height,
            file_name=self._file_name or path.name,
            mime_type="image/jpeg",
        )


class CaptureAdapter:
    """Launches the picker once storage access has been granted."""

    def __init__(self, gateway: CapabilityGateway, options: PickerOptions | None = None) -> None:
        self._gateway = gateway
        self.options = options or PickerOptions()

    async def capture(self, picker: ImagePicker) -> ImageRef | None:
        """Capture an image; None when a capability is denied or the user cancels.

        The camera decision is normally already recorded at startup, so only
        storage access prompts here.
        """
        for kind in REQUIRED_CAPABILITIES:
            decision = await self._gateway.request(kind)
            if decision != PermissionState.GRANTED:
                logger.info("Capture refused: %s not granted", kind)
                return None

        image_ref = await picker.launch(self.options)
        if image_ref is None:
            logger.info("Capture cancelled")
            return None

        logger.info("Captured image %s", image_ref.uri)
        return image_ref
