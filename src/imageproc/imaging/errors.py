"""Error taxonomy for the image pipeline.

``ClientInputError`` subclasses describe bad requests and reach callers
unchanged. Everything else raised while converting, resizing or extracting
is wrapped in a single ``ProcessingFailedError`` carrying the cause.
"""

from __future__ import annotations


class ImageProcessingError(Exception):
    """Base class for all pipeline errors."""


class ClientInputError(ImageProcessingError):
    """The request itself is invalid; retrying it unchanged cannot succeed."""


class InvalidTypeError(ClientInputError):
    """Raised when an image type identifier is not registered."""

    def __init__(self, type_id: str) -> None:
        super().__init__(f"Invalid image type: {type_id}")
        self.type_id = type_id


class InvalidCropGeometryError(ClientInputError):
    """Raised for negative offsets or non-positive crop sizes."""


class CropOutOfBoundsError(ClientInputError):
    """Raised when the crop rectangle exceeds the image dimensions."""

    def __init__(self, image_width: int, image_height: int) -> None:
        super().__init__(
            f"Crop area exceeds image dimensions. Image dimensions: {image_width}x{image_height}."
        )
        self.image_width = image_width
        self.image_height = image_height


class StagedFileNotFoundError(ImageProcessingError):
    """Raised when the staged upload is missing from disk."""

    def __init__(self, path: object) -> None:
        super().__init__("File not found")
        self.path = path


class CodecError(ImageProcessingError):
    """Base class for decode/encode failures."""


class UnsupportedFormatError(CodecError):
    """The data or the requested output format is not a supported image format."""


class CorruptImageError(CodecError):
    """The data looks like an image but cannot be decoded."""


class ProcessingFailedError(ImageProcessingError):
    """Catch-all wrapper for failures during conversion, resizing or extraction."""

    def __init__(self, action: str, cause: BaseException) -> None:
        super().__init__(f"Error {action} image: {cause}")
        self.cause = cause
