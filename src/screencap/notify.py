"""Desktop notifications through libnotify.

PyGObject is loaded lazily so that capture and save keep working on hosts
without a notification service. ``notify`` raises when the server is
unreachable; the orchestrator runs it as a detached task and only logs.
"""

import asyncio
import logging

from .permissions import PermissionState

log = logging.getLogger(__name__)

APP_NAME = "screencap"


def _notify_module():
    import gi
    gi.require_version("Notify", "0.7")
    from gi.repository import Notify
    return Notify


def _init(Notify) -> bool:
    return Notify.is_initted() or Notify.init(APP_NAME)


def _query_state() -> PermissionState:
    try:
        Notify = _notify_module()
    except (ImportError, ValueError) as e:
        log.debug("libnotify unavailable: %s", e)
        return PermissionState.UNKNOWN

    if not _init(Notify):
        return PermissionState.DENIED
    caps = Notify.get_server_caps() or []
    if not caps:
        return PermissionState.NOT_DETERMINED
    if "body" not in caps:
        # Server only shows summaries.
        return PermissionState.PROVISIONAL
    return PermissionState.AUTHORIZED


def _show(title: str, body: str) -> None:
    Notify = _notify_module()
    if not _init(Notify):
        raise RuntimeError("libnotify could not be initialised")
    notification = Notify.Notification.new(title, body, "camera-photo")
    notification.set_urgency(Notify.Urgency.LOW)
    notification.show()


class DesktopNotifier:
    """Notification collaborator backed by libnotify."""

    async def query_state(self) -> PermissionState:
        return await asyncio.to_thread(_query_state)

    async def request(self) -> PermissionState:
        # libnotify has no consent prompt; initialising is the request.
        return await self.query_state()

    async def notify(self, title: str, body: str) -> None:
        await asyncio.to_thread(_show, title, body)
        log.debug("Notification shown: %s", title)
