"""Upload staging: write incoming bytes under a collision-resistant name."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from imageproc.imaging import naming
from imageproc.imaging.storage import write_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedUpload:
    """An uploaded file waiting to be consumed by the pipeline."""

    path: Path
    base_name: str
    token: str


class UploadStaging:
    """Stages raw upload bytes in the upload directory."""

    def __init__(self, upload_dir: Path) -> None:
        self._upload_dir = Path(upload_dir)

    def stage(self, original_filename: str | None, data: bytes) -> StagedUpload:
        """Write *data* as ``<stem>-<uuid><ext>`` and return its reference."""
        token = str(uuid.uuid4())
        filename = naming.staged_filename(original_filename, token)
        path = self._upload_dir / filename
        write_atomic(path, data)
        logger.info("Staged %s (%d bytes)", path, len(data))
        return StagedUpload(path=path, base_name=naming.base_name(filename), token=token)

    @staticmethod
    def discard(staged: StagedUpload) -> None:
        """Remove a staged file that will not be processed."""
        try:
            staged.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Discarded staged upload %s", staged.path)
