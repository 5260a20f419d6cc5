"""Derivation and crop pipelines.

Both pipelines first turn a staged upload into the canonical artifact
(``<uploadDir>/<base>.<defaultFormat>``), then write a derived artifact:

* upload: ``<outputDir>/<base>-<suffix>.<defaultFormat>``, resized per image type
* crop:   ``<outputDir>/<base>-cropped.<format>``, extracted from the canonical

Conversion is idempotent per base name: an existing canonical artifact is
reused as-is. The staged file is deleted once the canonical artifact is
confirmed present. Derived artifacts are always rewritten.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from imageproc.imaging.codec import Rect
from imageproc.imaging.errors import (
    ClientInputError,
    CropOutOfBoundsError,
    InvalidCropGeometryError,
    ProcessingFailedError,
    StagedFileNotFoundError,
)
from imageproc.imaging.naming import base_name
from imageproc.imaging.storage import ensure_directory, write_atomic

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from imageproc.imaging.codec import ImageCodec
    from imageproc.imaging.naming import PathResolver
    from imageproc.imaging.registry import TypeRegistry

logger = logging.getLogger(__name__)

CROPPED_SUFFIX = "cropped"


@dataclass(frozen=True)
class CropRequest:
    """Crop rectangle plus optional output format (``None`` = canonical format)."""

    x: int
    y: int
    width: int
    height: int
    output_format: str | None = None


@dataclass(frozen=True)
class UploadResult:
    """Storage paths produced by the upload pipeline."""

    original_path: Path
    variant_path: Path


@dataclass
class _LockEntry:
    lock: threading.Lock
    users: int = 0


class _KeyedLocks:
    """One mutex per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, _LockEntry(lock=threading.Lock()))
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class ImageProcessor:
    """Runs the upload and crop pipelines against the local filesystem.

    All methods block; callers on an event loop should go through
    ``ProcessingPool``.
    """

    def __init__(self, resolver: PathResolver, registry: TypeRegistry, codec: ImageCodec) -> None:
        self._resolver = resolver
        self._registry = registry
        self._codec = codec
        self._locks = _KeyedLocks()

    @property
    def default_format(self) -> str:
        return self._resolver.default_format

    # -- Public API ---------------------------------------------------------

    def process_upload(self, staged_path: Path, type_id: str) -> UploadResult:
        """Convert a staged upload to canonical form and derive its variant.

        Raises:
            InvalidTypeError: If *type_id* is not registered.
            ProcessingFailedError: For any other failure, wrapping the cause.
        """
        try:
            self._ensure_staged(staged_path)
            descriptor = self._registry.lookup(type_id)

            base = base_name(staged_path.name)
            with self._locks.hold(base):
                canonical = self._convert_to_canonical(staged_path, base)

                variant = self._resolver.variant_path(base, descriptor.suffix)
                ensure_directory(variant.parent)
                image = self._codec.decode(canonical.read_bytes())
                resized = self._codec.resize(image, descriptor.width, descriptor.height, descriptor.fit)
                write_atomic(variant, self._codec.encode(resized, self.default_format))
        except ClientInputError:
            raise
        except Exception as exc:
            logger.exception("Processing %s as %r failed", staged_path.name, type_id)
            raise ProcessingFailedError("processing", exc) from exc

        logger.info(
            "Generated %s variant %s (%dx%d, %s)",
            descriptor.type_id,
            variant,
            resized.width,
            resized.height,
            descriptor.fit,
        )
        return UploadResult(original_path=canonical, variant_path=variant)

    def crop(self, staged_path: Path, request: CropRequest) -> Path:
        """Validate *request* against the staged image and write the crop.

        Returns:
            Path of the cropped artifact.

        Raises:
            InvalidCropGeometryError: For negative offsets or non-positive sizes.
            CropOutOfBoundsError: If the rectangle exceeds the image.
            ProcessingFailedError: For any other failure, wrapping the cause.
        """
        output_format = request.output_format or self.default_format
        try:
            self._ensure_staged(staged_path)
            image_width, image_height = self._codec.probe(staged_path.read_bytes())
            self._validate_crop(request, image_width, image_height)

            base = base_name(staged_path.name)
            with self._locks.hold(base):
                canonical = self._convert_to_canonical(staged_path, base)

                cropped_path = self._resolver.variant_path(base, CROPPED_SUFFIX, output_format)
                ensure_directory(cropped_path.parent)
                image = self._codec.decode(canonical.read_bytes())
                cropped = self._codec.extract(
                    image, Rect(x=request.x, y=request.y, width=request.width, height=request.height)
                )
                write_atomic(cropped_path, self._codec.encode(cropped, output_format))
        except ClientInputError:
            raise
        except Exception as exc:
            logger.exception("Cropping %s failed", staged_path.name)
            raise ProcessingFailedError("cropping", exc) from exc

        logger.info("Cropped %s to %s (%dx%d)", base, cropped_path, request.width, request.height)
        return cropped_path

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _ensure_staged(staged_path: Path) -> None:
        if not staged_path.is_file():
            raise StagedFileNotFoundError(staged_path)

    @staticmethod
    def _validate_crop(request: CropRequest, image_width: int, image_height: int) -> None:
        if request.x < 0 or request.y < 0 or request.width <= 0 or request.height <= 0:
            raise InvalidCropGeometryError("Invalid crop dimensions (negative values are not allowed).")
        if request.x + request.width > image_width or request.y + request.height > image_height:
            raise CropOutOfBoundsError(image_width, image_height)

    def _convert_to_canonical(self, staged_path: Path, base: str) -> Path:
        """Write the canonical artifact unless it already exists, then drop the staged file.

        If conversion raises, the staged file stays on disk.
        """
        canonical = self._resolver.canonical_path(base)
        if canonical.exists():
            logger.info("Reusing canonical artifact %s", canonical)
        else:
            image = self._codec.decode(staged_path.read_bytes())
            write_atomic(canonical, self._codec.encode(image, self.default_format))
            logger.info("Converted %s to %s", staged_path.name, canonical)

        staged_path.unlink()
        return canonical
