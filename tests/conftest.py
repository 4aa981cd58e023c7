"""Shared pytest fixtures and fakes for the screencap test suite."""

import asyncio
from datetime import datetime
from typing import Optional

import pytest
from PIL import Image

from screencap.config import Config
from screencap.displays import Display
from screencap.errors import CaptureError
from screencap.orchestrator import CaptureOrchestrator
from screencap.output import FileSink
from screencap.permissions import PermissionProbe, PermissionState


# =============================================================================
# Fakes
# =============================================================================

class FakeAuthorization:
    """Authorization source answering with fixed states or errors."""

    def __init__(
        self,
        screen: PermissionState = PermissionState.AUTHORIZED,
        notify: PermissionState = PermissionState.AUTHORIZED,
        screen_error: Optional[BaseException] = None,
        notify_error: Optional[BaseException] = None,
    ):
        self.screen = screen
        self.notify = notify
        self.screen_error = screen_error
        self.notify_error = notify_error
        self.screen_queries = 0
        self.notify_queries = 0
        self.requests = 0

    async def query_screen(self) -> PermissionState:
        self.screen_queries += 1
        if self.screen_error is not None:
            raise self.screen_error
        return self.screen

    async def query_notifications(self) -> PermissionState:
        self.notify_queries += 1
        if self.notify_error is not None:
            raise self.notify_error
        return self.notify

    async def request_notifications(self) -> PermissionState:
        self.requests += 1
        self.notify = PermissionState.AUTHORIZED
        return self.notify


class FakeEnumerator:
    def __init__(self, displays=None, error: Optional[CaptureError] = None):
        self.displays = displays if displays is not None else [Display("eDP-1", 64, 48)]
        self.error = error
        self.calls = 0

    async def list(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.displays)


class FakeEngine:
    """Engine that returns a solid image of the display's size.

    With ``gate`` set, each capture waits for the event before returning,
    which keeps a pipeline in flight for re-entrancy tests.
    """

    def __init__(self, error: Optional[CaptureError] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.calls: list[Display] = []
        self.started = asyncio.Event()

    async def capture(self, display: Display) -> Image.Image:
        self.calls.append(display)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return Image.new("RGB", (display.width, display.height), (200, 40, 40))


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def notify(self, title: str, body: str) -> None:
        self.sent.append((title, body))
        if self.fail:
            raise RuntimeError("notification server unreachable")


class FixedClock:
    """Datetime clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def config(tmp_path) -> Config:
    """Config whose directories all live under tmp_path."""
    return Config(
        wayland_capture=str(tmp_path / "wayland-capture"),
        output_dir=None,
        fallback_dir=tmp_path / "downloads",
        fallback_root=tmp_path / "desktop",
        permission_ttl=30.0,
        probe_timeout=2.0,
        capture_timeout=2.0,
        save_timeout=5.0,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 9, 14, 5, 30))


@pytest.fixture
def make_orchestrator(config, clock):
    """Factory building an orchestrator from fakes."""

    def _make(
        auth: Optional[FakeAuthorization] = None,
        enumerator: Optional[FakeEnumerator] = None,
        engine: Optional[FakeEngine] = None,
        notifier: Optional[FakeNotifier] = None,
    ) -> CaptureOrchestrator:
        return CaptureOrchestrator(
            config=config,
            probe=PermissionProbe(auth or FakeAuthorization(), timeout=config.probe_timeout),
            enumerator=enumerator or FakeEnumerator(),
            engine=engine or FakeEngine(),
            sink=FileSink(config, clock=clock),
            notifier=notifier,
        )

    return _make
