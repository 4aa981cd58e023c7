"""Core screenshot capture.

Uses the wayland-capture binary for the actual screen capture and hands the
result back as a Pillow image sized to the display.
"""

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .config import Config
from .displays import Display
from .errors import CaptureError, ErrorKind, Stage
from .wayland import capture_output

log = logging.getLogger(__name__)


def _load_image(path: Path) -> Image.Image:
    with Image.open(path) as img:
        img.load()
        return img.copy()


class CaptureEngine:
    """Acquires one still image per request."""

    def __init__(self, config: Config, timeout: Optional[float] = None):
        self.config = config
        self.timeout = timeout if timeout is not None else config.capture_timeout

    async def capture(self, display: Display) -> Image.Image:
        """Capture a display.

        Args:
            display: Display to capture

        Returns:
            Image of exactly display.width x display.height pixels

        Raises:
            CaptureError: If the compositor refuses or the capture fails
        """
        # Create temp file
        tmp = tempfile.NamedTemporaryFile(suffix=".png", delete=False)
        temp_path = Path(tmp.name)
        tmp.close()

        try:
            await capture_output(self.config, display.id, temp_path, timeout=self.timeout)
            img = await asyncio.to_thread(_load_image, temp_path)
        except CaptureError as e:
            raise e.at(Stage.CAPTURE)
        except (OSError, UnidentifiedImageError) as e:
            raise CaptureError(
                ErrorKind.CAPTURE_FAILED,
                f"Unreadable capture of {display.id}: {e}",
                Stage.CAPTURE,
            )
        finally:
            temp_path.unlink(missing_ok=True)

        if img.size != (display.width, display.height):
            log.debug(
                "Resampling %s capture from %dx%d to %dx%d",
                display.id, img.width, img.height, display.width, display.height,
            )
            img = img.resize((display.width, display.height))
        return img
