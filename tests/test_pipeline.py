"""Tests for the upload and crop pipelines."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from imageproc.imaging.codec import PillowCodec
from imageproc.imaging.errors import (
    CropOutOfBoundsError,
    InvalidCropGeometryError,
    InvalidTypeError,
    ProcessingFailedError,
    StagedFileNotFoundError,
    UnsupportedFormatError,
)
from imageproc.imaging.pipeline import CropRequest, ImageProcessor, _KeyedLocks

from conftest import image_bytes

if TYPE_CHECKING:
    from pathlib import Path

    from imageproc.config import Settings
    from imageproc.imaging.naming import PathResolver
    from imageproc.imaging.registry import FitPolicy, TypeRegistry
    from imageproc.imaging.staging import UploadStaging


def _files(directory: Path) -> list[Path]:
    if not directory.exists():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file())


class _FailingResizeCodec(PillowCodec):
    def resize(self, image: Image.Image, width: int, height: int, fit: FitPolicy) -> Image.Image:
        raise RuntimeError("resize exploded")


# ---------------------------------------------------------------------------
# Upload pipeline
# ---------------------------------------------------------------------------


class TestProcessUpload:
    def test_game_upload_produces_canonical_and_thumbnail(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))

        result = processor.process_upload(staged.path, "game")

        assert result.original_path == settings.upload_dir / "photo.webp"
        assert result.variant_path == settings.output_dir / "photo-thumbnail.webp"
        with Image.open(result.original_path) as original:
            assert original.format == "WEBP"
            assert original.size == (500, 400)
        with Image.open(result.variant_path) as variant:
            assert variant.format == "WEBP"
            assert variant.width <= 184
            assert variant.height <= 256
            assert abs(variant.width / variant.height - 500 / 400) < 0.02
        assert not staged.path.exists()

    def test_promotion_upload_is_exact_size(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        staged = staging.stage("banner.jpg", image_bytes((1000, 300)))

        result = processor.process_upload(staged.path, "promotion")

        assert result.variant_path == settings.output_dir / "banner-resized.webp"
        with Image.open(result.variant_path) as variant:
            assert variant.size == (361, 240)

    def test_existing_canonical_is_reused(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        first = staging.stage("photo.jpg", image_bytes((500, 400), color=(255, 0, 0)))
        result = processor.process_upload(first.path, "game")
        canonical_bytes = result.original_path.read_bytes()
        canonical_mtime = result.original_path.stat().st_mtime_ns

        second = staging.stage("photo.jpg", image_bytes((300, 300), color=(0, 0, 255)))
        assert second.path != first.path
        again = processor.process_upload(second.path, "game")

        assert again.original_path == result.original_path
        assert result.original_path.read_bytes() == canonical_bytes
        assert result.original_path.stat().st_mtime_ns == canonical_mtime
        assert not second.path.exists()
        assert _files(settings.upload_dir) == [settings.upload_dir / "photo.webp"]

    def test_variant_is_rewritten_every_time(self, processor: ImageProcessor, staging: UploadStaging) -> None:
        first = processor.process_upload(staging.stage("photo.jpg", image_bytes()).path, "game")
        inode = first.variant_path.stat().st_ino

        second = processor.process_upload(staging.stage("photo.jpg", image_bytes()).path, "game")

        assert second.variant_path == first.variant_path
        assert second.variant_path.stat().st_ino != inode

    def test_invalid_type_writes_nothing(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        staged = staging.stage("photo.jpg", image_bytes())

        with pytest.raises(InvalidTypeError, match="Invalid image type: banner"):
            processor.process_upload(staged.path, "banner")

        assert _files(settings.upload_dir) == [staged.path]
        assert _files(settings.output_dir) == []

    def test_missing_staged_file(self, processor: ImageProcessor, settings: Settings) -> None:
        with pytest.raises(ProcessingFailedError, match="Error processing image: File not found") as exc_info:
            processor.process_upload(settings.upload_dir / "ghost-0.jpg", "game")
        assert isinstance(exc_info.value.cause, StagedFileNotFoundError)

    def test_failed_conversion_keeps_staged_file(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        staged = staging.stage("notes.jpg", b"this is plain text")

        with pytest.raises(ProcessingFailedError, match="^Error processing image: ") as exc_info:
            processor.process_upload(staged.path, "game")

        assert isinstance(exc_info.value.cause, UnsupportedFormatError)
        assert staged.path.exists()
        assert not (settings.upload_dir / "notes.webp").exists()

    def test_variant_failure_orphans_canonical_for_retry(
        self,
        resolver: PathResolver,
        registry: TypeRegistry,
        staging: UploadStaging,
        processor: ImageProcessor,
    ) -> None:
        failing = ImageProcessor(resolver, registry, _FailingResizeCodec())
        staged = staging.stage("photo.jpg", image_bytes())

        with pytest.raises(ProcessingFailedError, match="resize exploded"):
            failing.process_upload(staged.path, "game")

        canonical = resolver.canonical_path("photo")
        assert canonical.exists()
        assert not staged.path.exists()

        retry = processor.process_upload(staging.stage("photo.jpg", image_bytes()).path, "game")
        assert retry.original_path == canonical
        assert retry.variant_path.exists()

    def test_concurrent_uploads_of_same_name(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        staged = [staging.stage("photo.jpg", image_bytes(color=(i * 30, 0, 0))) for i in range(6)]

        with ThreadPoolExecutor(max_workers=6) as executor:
            results = list(executor.map(lambda s: processor.process_upload(s.path, "game"), staged))

        assert {r.original_path for r in results} == {settings.upload_dir / "photo.webp"}
        assert all(not s.path.exists() for s in staged)
        assert _files(settings.upload_dir) == [settings.upload_dir / "photo.webp"]
        assert len(processor._locks) == 0


# ---------------------------------------------------------------------------
# Crop pipeline
# ---------------------------------------------------------------------------


class TestCrop:
    def test_crop_inside_bounds(self, processor: ImageProcessor, staging: UploadStaging, settings: Settings) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))

        path = processor.crop(staged.path, CropRequest(x=10, y=20, width=200, height=150))

        assert path == settings.output_dir / "photo-cropped.webp"
        with Image.open(path) as cropped:
            assert cropped.format == "WEBP"
            assert cropped.size == (200, 150)
        assert (settings.upload_dir / "photo.webp").exists()
        assert not staged.path.exists()

    def test_crop_full_frame(self, processor: ImageProcessor, staging: UploadStaging) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))
        path = processor.crop(staged.path, CropRequest(x=0, y=0, width=500, height=400))
        with Image.open(path) as cropped:
            assert cropped.size == (500, 400)

    def test_crop_output_format(self, processor: ImageProcessor, staging: UploadStaging, settings: Settings) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))

        path = processor.crop(staged.path, CropRequest(x=0, y=0, width=50, height=50, output_format="png"))

        assert path == settings.output_dir / "photo-cropped.png"
        with Image.open(path) as cropped:
            assert cropped.format == "PNG"

    def test_crop_reuses_existing_canonical(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        first = staging.stage("photo.jpg", image_bytes((500, 400), color=(255, 0, 0)))
        canonical = processor.process_upload(first.path, "game").original_path
        canonical_bytes = canonical.read_bytes()
        canonical_mtime = canonical.stat().st_mtime_ns

        second = staging.stage("photo.jpg", image_bytes((500, 400), color=(0, 0, 255)))
        path = processor.crop(second.path, CropRequest(x=10, y=20, width=200, height=150))

        assert canonical.read_bytes() == canonical_bytes
        assert canonical.stat().st_mtime_ns == canonical_mtime
        assert not second.path.exists()
        assert _files(settings.upload_dir) == [canonical]
        with Image.open(path) as cropped:
            assert cropped.size == (200, 150)
            red, green, blue = cropped.convert("RGB").getpixel((100, 75))
            assert red > 200
            assert blue < 50

    def test_crop_against_smaller_canonical_fails(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings
    ) -> None:
        small = staging.stage("photo.jpg", image_bytes((100, 80)))
        processor.process_upload(small.path, "game")

        large = staging.stage("photo.jpg", image_bytes((500, 400)))
        with pytest.raises(ProcessingFailedError, match="^Error cropping image: .*outside the image"):
            processor.crop(large.path, CropRequest(x=10, y=20, width=200, height=150))

        assert not (settings.output_dir / "photo-cropped.webp").exists()

    def test_out_of_bounds(self, processor: ImageProcessor, staging: UploadStaging, settings: Settings) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))

        with pytest.raises(CropOutOfBoundsError, match="500x400") as exc_info:
            processor.crop(staged.path, CropRequest(x=400, y=20, width=200, height=150))

        assert (exc_info.value.image_width, exc_info.value.image_height) == (500, 400)
        assert _files(settings.output_dir) == []
        assert not (settings.upload_dir / "photo.webp").exists()
        assert staged.path.exists()

    def test_out_of_bounds_vertically(self, processor: ImageProcessor, staging: UploadStaging) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))
        with pytest.raises(CropOutOfBoundsError):
            processor.crop(staged.path, CropRequest(x=0, y=300, width=10, height=101))

    @pytest.mark.parametrize(
        "request_",
        [
            CropRequest(x=-1, y=0, width=10, height=10),
            CropRequest(x=0, y=-5, width=10, height=10),
            CropRequest(x=0, y=0, width=0, height=10),
            CropRequest(x=0, y=0, width=10, height=-10),
        ],
    )
    def test_invalid_geometry(
        self, processor: ImageProcessor, staging: UploadStaging, settings: Settings, request_: CropRequest
    ) -> None:
        staged = staging.stage("photo.jpg", image_bytes((500, 400)))

        with pytest.raises(InvalidCropGeometryError):
            processor.crop(staged.path, request_)

        assert _files(settings.output_dir) == []

    def test_missing_staged_file(self, processor: ImageProcessor, settings: Settings) -> None:
        with pytest.raises(ProcessingFailedError, match="Error cropping image: File not found"):
            processor.crop(settings.upload_dir / "ghost.jpg", CropRequest(x=0, y=0, width=1, height=1))

    def test_unreadable_upload(self, processor: ImageProcessor, staging: UploadStaging) -> None:
        staged = staging.stage("notes.jpg", b"plain text")
        with pytest.raises(ProcessingFailedError, match="^Error cropping image: "):
            processor.crop(staged.path, CropRequest(x=0, y=0, width=1, height=1))
        assert staged.path.exists()


class TestKeyedLocks:
    def test_entries_are_released(self) -> None:
        locks = _KeyedLocks()
        with locks.hold("photo"):
            assert len(locks) == 1
            with locks.hold("banner"):
                assert len(locks) == 2
        assert len(locks) == 0

    def test_entry_released_on_error(self) -> None:
        locks = _KeyedLocks()
        with pytest.raises(ValueError), locks.hold("photo"):
            raise ValueError("boom")
        assert len(locks) == 0


class TestUploadStaging:
    def test_stage_writes_tokenized_name(self, staging: UploadStaging, settings: Settings) -> None:
        staged = staging.stage("photo.jpg", b"raw")

        assert staged.path == settings.upload_dir / f"photo-{staged.token}.jpg"
        assert staged.path.read_bytes() == b"raw"
        assert staged.base_name == "photo"

    def test_same_name_never_collides(self, staging: UploadStaging) -> None:
        first = staging.stage("photo.jpg", b"a")
        second = staging.stage("photo.jpg", b"b")
        assert first.path != second.path
        assert first.base_name == second.base_name

    def test_discard_is_idempotent(self, staging: UploadStaging) -> None:
        staged = staging.stage("photo.jpg", b"raw")
        staging.discard(staged)
        staging.discard(staged)
        assert not staged.path.exists()
