"""Post-capture persistence.

Handles:
- Resolving the destination directory (preferred, fallback, created subdir)
- Collision-free timestamped filenames
- PNG encoding
- Atomic, no-clobber writes
"""

import errno
import io
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from PIL import Image

from .config import Config
from .errors import CaptureError, ErrorKind, Remediation, Stage

log = logging.getLogger(__name__)

# errnos for filesystems that refuse hard links
_NO_LINK_ERRNOS = {errno.EPERM, errno.EOPNOTSUPP, errno.ENOTSUP, errno.EMLINK, errno.EXDEV}


@dataclass(frozen=True)
class SaveTarget:
    """Resolved destination of a saved capture."""

    directory: Path
    filename: str

    @property
    def path(self) -> Path:
        return self.directory / self.filename

    def to_dict(self) -> dict:
        return {"directory": str(self.directory), "filename": self.filename, "path": str(self.path)}


def _writable_dir(path: Optional[Path]) -> bool:
    if path is None:
        return False
    try:
        return path.is_dir() and os.access(path, os.W_OK | os.X_OK)
    except OSError as e:
        # e.g. EACCES on a parent that cannot be searched
        log.debug("Cannot inspect %s: %s", path, e)
        return False


def encode_png(image: Image.Image) -> bytes:
    """Serialize an image to PNG bytes.

    Raises:
        CaptureError: ENCODE_FAILED if Pillow cannot write the image as PNG
    """
    buf = io.BytesIO()
    try:
        image.save(buf, format="PNG")
    except (OSError, ValueError, KeyError, AttributeError) as e:
        raise CaptureError(ErrorKind.ENCODE_FAILED, f"PNG encoding failed: {e}", Stage.ENCODE)
    return buf.getvalue()


class FileSink:
    """Writes captures to disk without ever overwriting an existing file."""

    def __init__(self, config: Config, clock: Callable[[], datetime] = datetime.now):
        self.config = config
        self._clock = clock

    def resolve_directory(self, preferred_dir: Optional[Path] = None) -> Path:
        """Pick the first usable directory.

        Order: preferred (argument, else config.output_dir), the fallback
        directory, then fallback_root/fallback_subdir created on demand.

        Raises:
            CaptureError: DIRECTORY_UNAVAILABLE if the last step cannot be created
        """
        preferred = preferred_dir or self.config.output_dir
        if preferred is not None:
            preferred = Path(preferred).expanduser()
            if _writable_dir(preferred):
                return preferred
            log.debug("Preferred directory not writable: %s", preferred)

        if _writable_dir(self.config.fallback_dir):
            return self.config.fallback_dir
        log.debug("Fallback directory not usable: %s", self.config.fallback_dir)

        subdir = self.config.fallback_subdir_path
        try:
            subdir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CaptureError(
                ErrorKind.DIRECTORY_UNAVAILABLE,
                f"Could not create {subdir}: {e}",
                Stage.SAVE,
            )
        if not _writable_dir(subdir):
            raise CaptureError(
                ErrorKind.DIRECTORY_UNAVAILABLE,
                f"Directory not writable: {subdir}",
                Stage.SAVE,
                remediation=Remediation.FILE_ACCESS,
            )
        return subdir

    def timestamp(self) -> str:
        now = self._clock()
        if self.config.timestamp_style == "epoch":
            return str(int(now.timestamp()))
        return now.strftime("%Y%m%d_%H%M%S")

    def base_name(self, display_index: Optional[int] = None) -> str:
        parts = [self.config.filename_prefix]
        if display_index is not None:
            parts.append(f"display{display_index}")
        parts.append(self.timestamp())
        return "_".join(parts)

    def _candidates(self, stem: str):
        yield f"{stem}.png"
        if self.config.collision_policy == "suffix":
            for n in range(1, self.config.max_suffix + 1):
                yield f"{stem}_{n}.png"

    def save(
        self,
        image: Image.Image,
        preferred_dir: Optional[Path] = None,
        display_index: Optional[int] = None,
    ) -> SaveTarget:
        """Encode and persist an image.

        Args:
            image: Captured image
            preferred_dir: Directory to try first
            display_index: 1-based display number for multi-display captures

        Returns:
            SaveTarget of the written file

        Raises:
            CaptureError: ENCODE_FAILED, DIRECTORY_UNAVAILABLE, WRITE_FAILED or
                NAME_COLLISION
        """
        data = encode_png(image)
        directory = self.resolve_directory(preferred_dir)
        stem = self.base_name(display_index)

        tmp_path = self._write_temp(directory, data)
        try:
            for filename in self._candidates(stem):
                target = SaveTarget(directory, filename)
                if self._publish(tmp_path, target.path):
                    log.info("Screenshot saved: %s", target.path)
                    return target
                log.debug("Name taken: %s", filename)
        finally:
            tmp_path.unlink(missing_ok=True)

        raise CaptureError(
            ErrorKind.NAME_COLLISION,
            f"{stem}.png already exists in {directory}",
            Stage.SAVE,
        )

    def _write_temp(self, directory: Path, data: bytes) -> Path:
        try:
            fd, name = tempfile.mkstemp(prefix=".screencap-", suffix=".part", dir=directory)
        except OSError as e:
            raise self._write_error(e)
        tmp_path = Path(name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise self._write_error(e)
        return tmp_path

    def _publish(self, tmp_path: Path, final: Path) -> bool:
        """Move the finished temp file into place unless ``final`` exists."""
        try:
            os.link(tmp_path, final)
            return True
        except FileExistsError:
            return False
        except OSError as e:
            if e.errno not in _NO_LINK_ERRNOS:
                raise self._write_error(e)

        # No hard links here; check then rename.
        try:
            os.lstat(final)
            return False
        except FileNotFoundError:
            pass
        except OSError as e:
            raise self._write_error(e)
        try:
            os.rename(tmp_path, final)
        except OSError as e:
            raise self._write_error(e)
        return True

    @staticmethod
    def _write_error(e: OSError) -> CaptureError:
        remediation = None
        if isinstance(e, PermissionError):
            remediation = Remediation.FILE_ACCESS
        return CaptureError(ErrorKind.WRITE_FAILED, str(e), Stage.SAVE, remediation=remediation)
