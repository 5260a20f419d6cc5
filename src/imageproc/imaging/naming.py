"""Naming and path resolution for staged, canonical and derived images.

Staged uploads are named ``<base>-<token><ext>`` where the token is a UUID
that keeps concurrent uploads of the same file from overwriting each other.
Canonical and variant artifacts are keyed by ``<base>`` alone, so two uploads
sharing a base name resolve to the same artifacts.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePath
from urllib.parse import quote

TOKEN_PATTERN = re.compile(r"-[a-f0-9-]{36}$")

FALLBACK_STEM = "upload"


def base_name(staged_filename: str) -> str:
    """Return the stem of *staged_filename* with its trailing token stripped."""
    stem = PurePath(staged_filename).stem
    return TOKEN_PATTERN.sub("", stem, count=1)


def staged_filename(original_filename: str | None, token: str) -> str:
    """Build the staging name ``<stem>-<token><ext>`` for a client filename.

    Only the final path component of the client-supplied name is used.
    """
    name = PurePath((original_filename or "").replace("\\", "/")).name
    path = PurePath(name) if name else PurePath(FALLBACK_STEM)
    stem = path.stem if path.stem and not path.stem.startswith(".") else FALLBACK_STEM
    return f"{stem}-{token}{path.suffix}"


class PathResolver:
    """Maps base names to deterministic artifact paths."""

    def __init__(self, upload_dir: Path, output_dir: Path, default_format: str) -> None:
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self.default_format = default_format

    def canonical_path(self, base: str) -> Path:
        return self.upload_dir / f"{base}.{self.default_format}"

    def variant_path(self, base: str, suffix: str, fmt: str | None = None) -> Path:
        return self.output_dir / f"{base}-{suffix}.{fmt or self.default_format}"


def public_url(base_url: str, media_root: PurePath, path: PurePath, url_prefix: str = "images") -> str:
    """Build the externally reachable URL for a file under *media_root*.

    Separators are always forward slashes, whatever the host platform, and
    the path is percent-encoded.
    """
    relative = quote(path.relative_to(media_root).as_posix())
    return f"{base_url.rstrip('/')}/{url_prefix.strip('/')}/{relative}"
