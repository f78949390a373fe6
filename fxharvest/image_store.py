"""
Image Store — writes unique image bytes to the output directory.

Files are named ``image_<label>_<timestamp>.png`` where the timestamp is an
ISO-8601 UTC instant with ``:`` and ``.`` replaced by ``-``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fxharvest.dedup import ContentDeduplicator
from fxharvest.errors import PersistError

logger = logging.getLogger("image_store")

FILE_PREFIX = "image_"
FILE_EXTENSION = ".png"

_UNSAFE_LABEL = re.compile(r"[^A-Za-z0-9_-]+")


def file_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-ish UTC timestamp safe for filenames (``2026-01-02T03-04-05-678Z``)."""
    moment = moment or datetime.now(timezone.utc)
    iso = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{moment.microsecond // 1000:03d}Z"
    )
    return iso.replace(":", "-").replace(".", "-")


class ImageStore:
    """
    Persists image bytes once per content fingerprint.

    The deduplicator is shared with the controller's session, so replacing
    the session (``use_deduplicator``) resets what counts as a duplicate.
    """

    def __init__(
        self,
        output_dir: Path,
        deduplicator: Optional[ContentDeduplicator] = None,
    ):
        self.output_dir = Path(output_dir)
        self.deduplicator = deduplicator or ContentDeduplicator()
        self.saved_paths: List[Path] = []

    def use_deduplicator(self, deduplicator: ContentDeduplicator) -> None:
        self.deduplicator = deduplicator

    def build_filename(self, label: str, moment: Optional[datetime] = None) -> str:
        safe = _UNSAFE_LABEL.sub("-", str(label)).strip("-") or "x"
        return f"{FILE_PREFIX}{safe}_{file_timestamp(moment)}{FILE_EXTENSION}"

    def _unique_path(self, filename: str) -> Path:
        path = self.output_dir / filename
        stem, suffix = path.stem, path.suffix
        n = 1
        while path.exists():
            path = self.output_dir / f"{stem}_{n}{suffix}"
            n += 1
        return path

    def save_if_unique(self, data: bytes, label: str) -> bool:
        """Write *data* unless its fingerprint was already saved.

        Returns True if a new file was written, False for a duplicate.
        Raises PersistError when the write fails; the fingerprint is then
        forgotten so a later copy of the same bytes can still be saved.
        """
        digest = self.deduplicator.fingerprint(data)
        if not self.deduplicator.check_and_record(digest):
            logger.info("Duplicate image detected (hash %s...), skipping", digest[:8])
            return False

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self._unique_path(self.build_filename(label))
            with open(path, "xb") as fh:
                fh.write(data)
        except OSError as exc:
            self.deduplicator.forget(digest)
            logger.error("Write error for label %s: %s", label, exc)
            raise PersistError(f"Failed to write image: {exc}", path=str(self.output_dir)) from exc

        self.saved_paths.append(path)
        logger.info("Saved: %s (%d bytes)", path, len(data))
        return True
