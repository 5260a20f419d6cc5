"""Shared test fixtures for imageproc."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from imageproc.config import Settings
from imageproc.imaging.codec import PillowCodec
from imageproc.imaging.naming import PathResolver
from imageproc.imaging.pipeline import ImageProcessor
from imageproc.imaging.registry import TypeRegistry, build_default_registry
from imageproc.imaging.staging import UploadStaging

if TYPE_CHECKING:
    from pathlib import Path


def image_bytes(
    size: tuple[int, int] = (500, 400),
    fmt: str = "JPEG",
    color: tuple[int, ...] = (200, 40, 40),
    mode: str = "RGB",
) -> bytes:
    """Encode a solid-color image of the given size."""
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_settings(media_root: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {"media_root": media_root, "port": 3000, "public_host": "localhost"}
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted at a temporary media directory."""
    return make_settings(tmp_path / "images")


@pytest.fixture
def registry() -> TypeRegistry:
    return build_default_registry()


@pytest.fixture
def resolver(settings: Settings) -> PathResolver:
    return PathResolver(settings.upload_dir, settings.output_dir, settings.default_format)


@pytest.fixture
def processor(resolver: PathResolver, registry: TypeRegistry) -> ImageProcessor:
    return ImageProcessor(resolver, registry, PillowCodec())


@pytest.fixture
def staging(settings: Settings) -> UploadStaging:
    return UploadStaging(settings.upload_dir)
