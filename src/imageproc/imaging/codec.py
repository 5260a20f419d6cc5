"""Codec adapter: decode, resize, extract and re-encode raster images.

The pipeline only talks to the ``ImageCodec`` protocol; ``PillowCodec`` is
the production implementation.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from imageproc.imaging.errors import CodecError, CorruptImageError, UnsupportedFormatError
from imageproc.imaging.registry import FitPolicy


@dataclass(frozen=True)
class Rect:
    """Pixel rectangle with its origin at the top-left corner."""

    x: int
    y: int
    width: int
    height: int


class ImageCodec(Protocol):
    """Protocol for the pixel-level operations the pipeline delegates."""

    def decode(self, data: bytes) -> Image.Image:
        """Decode raw bytes into an image."""
        ...

    def encode(self, image: Image.Image, fmt: str) -> bytes:
        """Encode an image into the given format (e.g. ``webp``, ``png``)."""
        ...

    def resize(self, image: Image.Image, width: int, height: int, fit: FitPolicy) -> Image.Image:
        """Resize an image into a ``width`` x ``height`` box using ``fit``."""
        ...

    def extract(self, image: Image.Image, rect: Rect) -> Image.Image:
        """Cut ``rect`` out of an image."""
        ...

    def probe(self, data: bytes) -> tuple[int, int]:
        """Return ``(width, height)`` without decoding pixel data."""
        ...

    def supports_format(self, fmt: str) -> bool:
        """Return whether ``encode`` can write ``fmt``."""
        ...


# Modes each encoder can write directly; anything else is converted first.
_NATIVE_MODES: dict[str, frozenset[str]] = {
    "JPEG": frozenset({"RGB", "L", "CMYK"}),
    "WEBP": frozenset({"RGB", "RGBA"}),
}


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info


class PillowCodec:
    """``ImageCodec`` backed by Pillow."""

    def __init__(self, quality: int = 90) -> None:
        self._quality = quality

    def decode(self, data: bytes) -> Image.Image:
        image = self._open(data)
        try:
            image.load()
        except (OSError, SyntaxError, ValueError) as exc:
            raise CorruptImageError(f"Cannot decode image: {exc}") from exc
        return image

    def encode(self, image: Image.Image, fmt: str) -> bytes:
        pil_format = self.pil_format(fmt)
        image = self._prepare_mode(image, pil_format)

        save_kwargs: dict[str, object] = {}
        if pil_format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = self._quality

        buffer = io.BytesIO()
        try:
            image.save(buffer, format=pil_format, **save_kwargs)
        except (KeyError, OSError) as exc:
            raise UnsupportedFormatError(f"Cannot encode image as {fmt}: {exc}") from exc
        return buffer.getvalue()

    def resize(self, image: Image.Image, width: int, height: int, fit: FitPolicy) -> Image.Image:
        if fit is FitPolicy.FILL:
            return image.resize((width, height), Image.Resampling.LANCZOS)

        # thumbnail() preserves aspect ratio and never enlarges.
        resized = image.copy()
        resized.thumbnail((width, height), Image.Resampling.LANCZOS)
        return resized

    def extract(self, image: Image.Image, rect: Rect) -> Image.Image:
        # Image.crop() pads out-of-range areas instead of failing.
        if (
            rect.x < 0
            or rect.y < 0
            or rect.width <= 0
            or rect.height <= 0
            or rect.x + rect.width > image.width
            or rect.y + rect.height > image.height
        ):
            raise CodecError(
                f"Extract area {rect.width}x{rect.height}+{rect.x}+{rect.y} "
                f"is outside the image ({image.width}x{image.height})"
            )
        return image.crop((rect.x, rect.y, rect.x + rect.width, rect.y + rect.height))

    def probe(self, data: bytes) -> tuple[int, int]:
        image = self._open(data)
        width, height = image.size
        return width, height

    def supports_format(self, fmt: str) -> bool:
        try:
            self.pil_format(fmt)
        except UnsupportedFormatError:
            return False
        return True

    @staticmethod
    def pil_format(fmt: str) -> str:
        """Map a format name or file extension to Pillow's encoder name.

        Raises:
            UnsupportedFormatError: If no Pillow encoder handles *fmt*.
        """
        extension = "." + fmt.lower().lstrip(".")
        pil_format = Image.registered_extensions().get(extension)
        if pil_format is None or pil_format not in Image.SAVE:
            raise UnsupportedFormatError(f"Unsupported output format: {fmt}")
        return pil_format

    @staticmethod
    def _open(data: bytes) -> Image.Image:
        try:
            return Image.open(io.BytesIO(data))
        except UnidentifiedImageError as exc:
            raise UnsupportedFormatError("Unsupported or unrecognized image format") from exc
        except (OSError, SyntaxError, ValueError) as exc:
            raise CorruptImageError(f"Cannot read image: {exc}") from exc

    @staticmethod
    def _prepare_mode(image: Image.Image, pil_format: str) -> Image.Image:
        native = _NATIVE_MODES.get(pil_format)
        if native is None or image.mode in native:
            return image
        if pil_format == "WEBP" and _has_alpha(image):
            return image.convert("RGBA")
        return image.convert("RGB")
