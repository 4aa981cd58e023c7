"""Display enumeration."""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Config
from .errors import CaptureError, ErrorKind, Stage
from .wayland import list_outputs

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Display:
    """A capturable output. Never cached across captures."""

    id: str
    width: int
    height: int
    description: str = ""
    x: int = 0
    y: int = 0

    @classmethod
    def from_output(cls, data: dict) -> "Display":
        return cls(
            id=str(data["name"]),
            width=int(data["width"]),
            height=int(data["height"]),
            description=data.get("description") or "",
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "width": self.width,
            "height": self.height,
            "description": self.description,
        }


class DisplayEnumerator:
    """Lists displays in the order the compositor reports them."""

    def __init__(self, config: Config, timeout: Optional[float] = None):
        self.config = config
        self.timeout = timeout if timeout is not None else config.probe_timeout

    async def list(self) -> list[Display]:
        """List displays; the first one is the primary capture target.

        Raises:
            CaptureError: NO_DISPLAY if nothing is capturable, or the
                boundary's classified failure
        """
        try:
            outputs = await list_outputs(self.config, timeout=self.timeout)
        except CaptureError as e:
            raise e.at(Stage.ENUMERATE)

        displays = []
        for output in outputs:
            try:
                displays.append(Display.from_output(output))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping malformed output %r: %s", output, e)

        if not displays:
            raise CaptureError(ErrorKind.NO_DISPLAY, "No display available", Stage.ENUMERATE)
        log.debug("Displays: %s", ", ".join(d.id for d in displays))
        return displays
