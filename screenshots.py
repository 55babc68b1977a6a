"""Screenshot encoding and optional persistence."""
from __future__ import annotations

import base64
import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image

logger = logging.getLogger("screenshots")


def encode_png_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def data_url(screenshot_b64: str) -> str:
    return f"data:image/png;base64,{screenshot_b64}"


class ScreenshotStore:
    """Writes captured screens to disk, one folder per session."""

    def __init__(self, root: Path, session_id: str):
        self.folder = Path(root) / session_id
        self._index = 0

    def save(self, data: bytes, label: str = "step") -> Optional[Path]:
        """Persist PNG bytes; failures are logged and return None."""
        self._index += 1
        stamp = datetime.utcnow().strftime("%H%M%S")
        safe_label = "".join(c if c.isalnum() or c in "-_" else "_" for c in label)[:40]
        path = self.folder / f"{self._index:03d}-{stamp}-{safe_label}.png"
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            image = Image.open(io.BytesIO(data))
            image.save(path)
        except Exception as e:
            logger.warning(f"Failed to save screenshot {path.name}: {e}")
            return None
        return path
