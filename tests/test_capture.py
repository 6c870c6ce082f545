"""Tests for the capture adapter and the upload-backed picker."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from conftest import FakePicker, FakePrompt, jpeg_bytes
from PIL import Image

from snapclassify.capabilities import Capability, CapabilityGateway, PermissionState
from snapclassify.capture import CaptureAdapter, ImageRef, PickerOptions, UploadImagePicker
from snapclassify.errors import CaptureError
from snapclassify.ml.preprocessing import uri_to_path

if TYPE_CHECKING:
    from pathlib import Path


class TestUploadImagePicker:
    async def test_empty_upload_is_cancel(self, tmp_path: Path) -> None:
        picker = UploadImagePicker(b"", tmp_path)
        assert await picker.launch(PickerOptions()) is None
        assert not any(tmp_path.iterdir())

    async def test_image_is_shrunk_to_thumbnail_bounds(self, tmp_path: Path) -> None:
        picker = UploadImagePicker(jpeg_bytes(width=800, height=400), tmp_path / "captures", "holiday.jpg")

        ref = await picker.launch(PickerOptions())

        assert ref is not None
        assert ref.uri.startswith("file://")
        assert ref.file_name == "holiday.jpg"
        assert ref.mime_type == "image/jpeg"
        assert (ref.width, ref.height) == (200, 100)
        with Image.open(uri_to_path(ref.uri)) as saved:
            assert saved.size == (200, 100)

    async def test_small_image_is_not_enlarged(self, tmp_path: Path) -> None:
        ref = await UploadImagePicker(jpeg_bytes(width=40, height=30), tmp_path).launch(PickerOptions())
        assert ref is not None
        assert (ref.width, ref.height) == (40, 30)

    async def test_each_capture_gets_its_own_file(self, tmp_path: Path) -> None:
        data = jpeg_bytes()
        first = await UploadImagePicker(data, tmp_path).launch(PickerOptions())
        second = await UploadImagePicker(data, tmp_path).launch(PickerOptions())
        assert first is not None and second is not None
        assert first.uri != second.uri

    async def test_invalid_upload_raises(self, tmp_path: Path) -> None:
        with pytest.raises(CaptureError, match="not a valid image"):
            await UploadImagePicker(b"plain text", tmp_path).launch(PickerOptions())

    @pytest.mark.usefixtures("pixel_limit")
    async def test_decompression_bomb_raises_capture_error(self, tmp_path: Path) -> None:
        with pytest.raises(CaptureError, match="not a valid image"):
            await UploadImagePicker(jpeg_bytes(), tmp_path).launch(PickerOptions())
        assert not any(tmp_path.iterdir())


class TestCaptureAdapter:
    async def test_granted_capture_returns_picker_result(self) -> None:
        ref = ImageRef(uri="file:///tmp/a.jpg")
        picker = FakePicker(ref)
        adapter = CaptureAdapter(CapabilityGateway(FakePrompt()))

        assert await adapter.capture(picker) is ref
        assert picker.launched == 1

    async def test_storage_denied_never_shows_picker(self) -> None:
        picker = FakePicker(ImageRef(uri="file:///tmp/a.jpg"))
        prompt = FakePrompt({Capability.WRITE_STORAGE: PermissionState.DENIED})
        adapter = CaptureAdapter(CapabilityGateway(prompt))

        assert await adapter.capture(picker) is None
        assert picker.launched == 0

    async def test_camera_denied_never_shows_picker(self) -> None:
        picker = FakePicker(ImageRef(uri="file:///tmp/a.jpg"))
        prompt = FakePrompt({Capability.CAMERA: PermissionState.DENIED})
        adapter = CaptureAdapter(CapabilityGateway(prompt))

        assert await adapter.capture(picker) is None
        assert picker.launched == 0

    async def test_cancel_returns_none(self) -> None:
        adapter = CaptureAdapter(CapabilityGateway(FakePrompt()))
        assert await adapter.capture(FakePicker(None)) is None

    def test_default_picker_options(self) -> None:
        options = CaptureAdapter(CapabilityGateway(FakePrompt())).options
        assert options == PickerOptions(media_type="photo", include_base64=False, max_width=200, max_height=200)
