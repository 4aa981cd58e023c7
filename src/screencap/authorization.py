"""Authorization source for a Wayland desktop."""

import logging
from typing import Optional

from .config import Config
from .errors import CaptureError
from .notify import DesktopNotifier
from .permissions import PermissionState
from .wayland import list_outputs

log = logging.getLogger(__name__)


class SystemAuthorization:
    """Reads capability state from the compositor and notification server.

    Screen access is granted when wayland-capture can list outputs. A
    refusal surfaces as a CaptureError whose ``authorization`` flag was set
    by the wayland boundary; the probe maps it to DENIED.
    """

    def __init__(self, config: Config, notifier: Optional[DesktopNotifier] = None):
        self.config = config
        self.notifier = notifier or DesktopNotifier()

    async def query_screen(self) -> PermissionState:
        try:
            await list_outputs(self.config, timeout=self.config.probe_timeout)
        except CaptureError as e:
            log.debug("Screen access check failed: %s", e.detail)
            raise
        return PermissionState.AUTHORIZED

    async def query_notifications(self) -> PermissionState:
        return await self.notifier.query_state()

    async def request_notifications(self) -> PermissionState:
        return await self.notifier.request()
