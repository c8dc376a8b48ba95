"""
Local image storage for inspection screenshots.

Layout under the base directory:

    user-<user_id>/inspections/<inspection_id>/screenshot.png
                                              annotated.png
                                              preview.jpg
                                              metadata.json
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from app.image_utils import make_preview

logger = logging.getLogger(__name__)

ORIGINAL_NAME = "screenshot.png"
ANNOTATED_NAME = "annotated.png"
PREVIEW_NAME = "preview.jpg"
METADATA_NAME = "metadata.json"


@dataclass
class ScreenshotPaths:
    original: str
    annotated: str
    preview: Optional[str] = None


def _safe_segment(value: str) -> str:
    cleaned = "".join(c for c in str(value) if c.isalnum() or c in "-_")
    if not cleaned:
        raise ValueError(f"Invalid path segment: {value!r}")
    return cleaned


class LocalScreenshotStore:
    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def inspection_dir(self, user_id: str, inspection_id: str) -> str:
        return os.path.join(self.base_dir, f"user-{_safe_segment(user_id)}", "inspections",
                            _safe_segment(inspection_id))

    def relative(self, path: str) -> str:
        """Path below the base directory, as stored in results and served by the API."""
        return os.path.relpath(path, self.base_dir).replace(os.sep, "/")

    def paths_for(self, user_id: str, inspection_id: str) -> ScreenshotPaths:
        directory = self.inspection_dir(user_id, inspection_id)
        return ScreenshotPaths(
            original=os.path.join(directory, ORIGINAL_NAME),
            annotated=os.path.join(directory, ANNOTATED_NAME),
            preview=os.path.join(directory, PREVIEW_NAME),
        )

    def save_inspection_screenshots(self, user_id: str, inspection_id: str, original: bytes,
                                    annotated: bytes, metadata: dict[str, Any]) -> ScreenshotPaths:
        directory = self.inspection_dir(user_id, inspection_id)
        os.makedirs(directory, exist_ok=True)
        paths = self.paths_for(user_id, inspection_id)

        with open(paths.original, "wb") as f:
            f.write(original)
        with open(paths.annotated, "wb") as f:
            f.write(annotated)

        try:
            preview = make_preview(annotated)
            with open(paths.preview, "wb") as f:
                f.write(preview)
        except OSError as e:
            logger.warning("[screenshots] Preview not written for %s: %s", inspection_id, e)
            paths.preview = None

        record = {
            **metadata,
            "inspectionId": inspection_id,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        with open(os.path.join(directory, METADATA_NAME), "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)

        logger.info("[screenshots] Saved screenshots for inspection %s in %s", inspection_id, directory)
        return paths

    def exists(self, user_id: str, inspection_id: str) -> bool:
        paths = self.paths_for(user_id, inspection_id)
        return os.path.exists(paths.original) and os.path.exists(paths.annotated)

    def read_metadata(self, user_id: str, inspection_id: str) -> Optional[dict]:
        path = os.path.join(self.inspection_dir(user_id, inspection_id), METADATA_NAME)
        if not os.path.exists(path):
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def delete(self, user_id: str, inspection_id: str) -> bool:
        directory = self.inspection_dir(user_id, inspection_id)
        if not os.path.isdir(directory):
            return False
        shutil.rmtree(directory)
        logger.info("[screenshots] Deleted screenshots for inspection %s", inspection_id)
        return True
