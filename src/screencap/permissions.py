"""Authorization state for the capabilities a capture depends on.

The probe only reads OS state. It owns the PermissionState of each
capability; nothing else writes it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from .errors import CaptureError, ErrorKind, Stage

log = logging.getLogger(__name__)


class PermissionState(str, Enum):
    UNKNOWN = "unknown"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    NOT_DETERMINED = "not_determined"
    PROVISIONAL = "provisional"

    @property
    def usable(self) -> bool:
        return self in (PermissionState.AUTHORIZED, PermissionState.PROVISIONAL)


class Capability(str, Enum):
    SCREEN_RECORDING = "screen_recording"
    NOTIFICATIONS = "notifications"


class AuthorizationSource(Protocol):
    """OS boundary queried by the probe."""

    async def query_screen(self) -> PermissionState: ...

    async def query_notifications(self) -> PermissionState: ...

    async def request_notifications(self) -> PermissionState: ...


@dataclass
class ProbeResult:
    """Outcome of one refresh."""

    screen: PermissionState
    notify: PermissionState
    screen_error: Optional[CaptureError] = None
    notify_error: Optional[CaptureError] = None
    checked_at: float = 0.0

    @property
    def host_authorization_error(self) -> bool:
        return self.screen_error is not None and self.screen_error.authorization

    def to_dict(self) -> dict:
        return {
            "screen": self.screen.value,
            "notify": self.notify.value,
            "screen_error": self.screen_error.to_dict() if self.screen_error else None,
            "notify_error": self.notify_error.to_dict() if self.notify_error else None,
            "host_authorization_error": self.host_authorization_error,
        }


def _as_capture_error(exc: BaseException) -> CaptureError:
    if isinstance(exc, CaptureError):
        return exc.at(Stage.PROBE)
    if isinstance(exc, asyncio.TimeoutError):
        return CaptureError(ErrorKind.CAPTURE_FAILED, "Permission query timed out", Stage.PROBE)
    return CaptureError(ErrorKind.CAPTURE_FAILED, str(exc) or type(exc).__name__, Stage.PROBE)


class PermissionProbe:
    """Tracks screen recording and notification authorization."""

    def __init__(
        self,
        source: AuthorizationSource,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.timeout = timeout
        self._clock = clock
        self._screen = PermissionState.UNKNOWN
        self._notify = PermissionState.UNKNOWN
        self._last: Optional[ProbeResult] = None
        self._stale = True

    @property
    def screen_state(self) -> PermissionState:
        return self._screen

    @property
    def notify_state(self) -> PermissionState:
        return self._notify

    @property
    def last_result(self) -> Optional[ProbeResult]:
        return self._last

    def state(self, capability: Capability) -> PermissionState:
        if capability is Capability.SCREEN_RECORDING:
            return self._screen
        return self._notify

    def is_stale(self, max_age: Optional[float] = None) -> bool:
        """Whether the cached states should be re-queried before use."""
        if self._stale or self._last is None:
            return True
        if not self._screen.usable:
            return True
        if max_age is not None and self._clock() - self._last.checked_at > max_age:
            return True
        return False

    def invalidate(self) -> None:
        self._stale = True

    async def _bounded(self, coro):
        if self.timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def refresh(self) -> ProbeResult:
        """Query both capabilities, one round-trip each.

        A failing query never hides the other capability's answer: a screen
        failure falls back to DENIED with the structured error attached, a
        notification failure leaves notifications UNKNOWN.
        """
        screen, notify = await asyncio.gather(
            self._bounded(self.source.query_screen()),
            self._bounded(self.source.query_notifications()),
            return_exceptions=True,
        )

        result = ProbeResult(
            screen=PermissionState.UNKNOWN,
            notify=PermissionState.UNKNOWN,
            checked_at=self._clock(),
        )

        if isinstance(screen, BaseException):
            result.screen = PermissionState.DENIED
            result.screen_error = _as_capture_error(screen)
            log.warning("Screen recording query failed: %s", result.screen_error.detail)
        else:
            result.screen = screen

        if isinstance(notify, BaseException):
            result.notify_error = _as_capture_error(notify)
            log.debug("Notification query failed: %s", result.notify_error.detail)
        else:
            result.notify = notify

        self._screen = result.screen
        self._notify = result.notify
        self._last = result
        self._stale = False
        log.debug("Permissions: screen=%s notify=%s", result.screen.value, result.notify.value)
        return result

    async def request_notifications(self) -> PermissionState:
        """Ask the notification service for authorization."""
        try:
            state = await self._bounded(self.source.request_notifications())
        except (CaptureError, asyncio.TimeoutError, OSError) as e:
            log.warning("Notification authorization request failed: %s", e)
            state = PermissionState.UNKNOWN
        self._notify = state
        return state
