"""API route definitions."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import ValidationError

from imageproc.api.schemas import CropOptions, ErrorResponse, HealthResponse, UploadResponse
from imageproc.imaging.errors import ClientInputError, ProcessingFailedError
from imageproc.imaging.naming import public_url
from imageproc.imaging.pipeline import CropRequest

if TYPE_CHECKING:
    from collections.abc import Callable

    from imageproc.config import Settings
    from imageproc.imaging.codec import ImageCodec
    from imageproc.imaging.pipeline import ImageProcessor
    from imageproc.imaging.pool import ProcessingPool
    from imageproc.imaging.registry import TypeRegistry
    from imageproc.imaging.staging import StagedUpload, UploadStaging

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/images", tags=["images"])
health_router = APIRouter(tags=["health"])

_CROP_FIELDS = ("x", "y", "width", "height")

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_registry(request: Request) -> TypeRegistry:
    registry: TypeRegistry = request.app.state.registry
    return registry


def _get_codec(request: Request) -> ImageCodec:
    codec: ImageCodec = request.app.state.codec
    return codec


def _get_processor(request: Request) -> ImageProcessor:
    processor: ImageProcessor = request.app.state.processor
    return processor


def _get_staging(request: Request) -> UploadStaging:
    staging: UploadStaging = request.app.state.staging
    return staging


def _get_pool(request: Request) -> ProcessingPool:
    pool: ProcessingPool = request.app.state.processing_pool
    return pool


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _media_type(fmt: str) -> str:
    subtype = fmt.lower()
    return "image/jpeg" if subtype == "jpg" else f"image/{subtype}"


async def _stage_upload(request: Request, file: UploadFile) -> StagedUpload:
    """Check the upload is an image within the size limit and stage it."""
    if not (file.content_type or "").startswith("image/"):
        raise _bad_request("Only image files are allowed")

    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the maximum size of {settings.max_file_size} bytes",
        )

    return await _run_in_pool(request, _get_staging(request).stage, file.filename, data)


async def _run_in_pool(request: Request, func: Callable[..., T], *args: object) -> T:
    try:
        return await _get_pool(request).run(func, *args)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server busy, try again later",
        ) from None


async def _process_staged(request: Request, staged: StagedUpload, func: Callable[..., T], *args: object) -> T:
    """Run a pipeline call on a staged upload, discarding the upload on failure."""
    try:
        return await _run_in_pool(request, func, staged.path, *args)
    except ClientInputError as exc:
        logger.info("Rejected %s: %s", staged.path.name, exc)
        _get_staging(request).discard(staged)
        raise _bad_request(str(exc)) from exc
    except ProcessingFailedError as exc:
        _get_staging(request).discard(staged)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except HTTPException:
        _get_staging(request).discard(staged)
        raise


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses=_ERROR_RESPONSES,
    summary="Upload an image and generate its variant",
)
async def upload_image(
    request: Request,
    file: Annotated[UploadFile | None, File()] = None,
    image_type: Annotated[str | None, Form(alias="imageType")] = None,
) -> UploadResponse:
    """Store the canonical original of an upload and derive the variant for ``imageType``."""
    if file is None or not image_type:
        raise _bad_request("File and image type are required")
    if image_type not in _get_registry(request):
        raise _bad_request(f"Invalid image type: {image_type}")

    staged = await _stage_upload(request, file)
    processor = _get_processor(request)
    result = await _process_staged(request, staged, processor.process_upload, image_type)

    settings = _get_settings(request)
    return UploadResponse(
        original=public_url(settings.public_base_url, settings.media_root, result.original_path),
        variation=public_url(settings.public_base_url, settings.media_root, result.variant_path),
    )


@router.post(
    "/crop",
    response_class=FileResponse,
    responses=_ERROR_RESPONSES,
    summary="Crop an image and return the result",
)
async def crop_image(
    request: Request,
    file: Annotated[UploadFile | None, File()] = None,
    crop_options_json: Annotated[str | None, Form(alias="cropOptions")] = None,
) -> FileResponse:
    """Crop the uploaded image to ``cropOptions`` and stream the encoded result."""
    try:
        raw_options = json.loads(crop_options_json) if crop_options_json is not None else None
    except ValueError:
        raw_options = None
    if not isinstance(raw_options, dict):
        raise _bad_request("Invalid cropOptions JSON.")

    if file is None:
        raise _bad_request("File is required for cropping.")
    if any(raw_options.get(field) is None for field in _CROP_FIELDS):
        raise _bad_request("Missing crop dimensions.")

    try:
        options = CropOptions.model_validate(raw_options)
    except ValidationError as exc:
        raise _bad_request("Invalid crop dimensions (integers are required).") from exc

    processor = _get_processor(request)
    output_format = (options.output_format or processor.default_format).lower()
    if not _get_codec(request).supports_format(output_format):
        raise _bad_request(f"Unsupported output format: {output_format}")

    staged = await _stage_upload(request, file)
    crop_request = CropRequest(
        x=options.x,
        y=options.y,
        width=options.width,
        height=options.height,
        output_format=output_format,
    )
    cropped_path = await _process_staged(request, staged, processor.crop, crop_request)

    return FileResponse(
        cropped_path,
        media_type=_media_type(output_format),
        headers={"Content-Disposition": "inline"},
    )


@health_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_pool(request)
    return HealthResponse(
        status="ok",
        image_types=_get_registry(request).type_ids(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
