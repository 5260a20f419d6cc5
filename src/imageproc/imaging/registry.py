"""Image type registry: declared image types and their variant geometry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

from imageproc.imaging.errors import InvalidTypeError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class FitPolicy(StrEnum):
    """How a variant is fitted into its target box."""

    # Exact target dimensions, aspect ratio ignored.
    FILL = "fill"
    # Largest aspect-preserving size within the box, never upscaled.
    INSIDE = "inside"


class ImageType(StrEnum):
    GAME = "game"
    PROMOTION = "promotion"


@dataclass(frozen=True)
class ImageTypeDescriptor:
    """Variant geometry for a single image type."""

    type_id: str
    width: int
    height: int
    suffix: str
    fit: FitPolicy


class TypeRegistry:
    """Read-only mapping from image type identifier to descriptor."""

    def __init__(self, descriptors: Iterable[ImageTypeDescriptor]) -> None:
        entries = {d.type_id: d for d in descriptors}
        self._descriptors: Mapping[str, ImageTypeDescriptor] = MappingProxyType(entries)

    def lookup(self, type_id: str) -> ImageTypeDescriptor:
        """Return the descriptor for *type_id*.

        Raises:
            InvalidTypeError: If *type_id* is not registered.
        """
        try:
            return self._descriptors[type_id]
        except KeyError:
            raise InvalidTypeError(type_id) from None

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def type_ids(self) -> list[str]:
        """Return the registered identifiers in declaration order."""
        return list(self._descriptors)


DEFAULT_DESCRIPTORS: tuple[ImageTypeDescriptor, ...] = (
    ImageTypeDescriptor(
        type_id=ImageType.GAME,
        width=184,
        height=256,
        suffix="thumbnail",
        fit=FitPolicy.INSIDE,
    ),
    ImageTypeDescriptor(
        type_id=ImageType.PROMOTION,
        width=361,
        height=240,
        suffix="resized",
        fit=FitPolicy.FILL,
    ),
)


def build_default_registry() -> TypeRegistry:
    """Create the registry of built-in image types."""
    return TypeRegistry(DEFAULT_DESCRIPTORS)
