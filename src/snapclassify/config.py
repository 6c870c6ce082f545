"""Environment-based configuration for SnapClassify."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """Application settings loaded from SNAPCLASSIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SNAPCLASSIFY_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    classifier_model: str = "mobilenet_v2"
    models_dir: str = str(Path.home() / ".cache" / "snapclassify" / "models")
    custom_model_path: str = str(_PACKAGE_DIR / "assets" / "model" / "model.onnx")
    custom_model_input_shape: list[int] = Field(default_factory=lambda: [1, 8])
    top_k: int = Field(default=3, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Capture
    captures_dir: str = str(Path.home() / ".cache" / "snapclassify" / "captures")
    thumbnail_max_width: int = Field(default=200, ge=1)
    thumbnail_max_height: int = Field(default=200, ge=1)

    # Capabilities the settings-backed permission prompt grants
    granted_capabilities: set[Literal["camera", "write_storage"]] = Field(
        default_factory=lambda: {"camera", "write_storage"}
    )

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
