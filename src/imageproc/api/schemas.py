"""Pydantic request/response schemas for the imageproc API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UploadResponse(BaseModel):
    """URLs of the canonical original and its generated variant."""

    original: str = Field(description="URL of the canonical (re-encoded) original")
    variation: str = Field(description="URL of the variant generated for the image type")


class CropOptions(BaseModel):
    """Crop rectangle sent as the JSON-encoded ``cropOptions`` form field.

    Geometry bounds are checked against the image by the crop pipeline, not here.
    """

    model_config = ConfigDict(populate_by_name=True)

    x: int
    y: int
    width: int
    height: int
    output_format: str | None = Field(default=None, alias="outputFormat")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    image_types: list[str]
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
