"""Tests for the libnotify notifier and the system authorization source."""

import pytest

from screencap import notify
from screencap.authorization import SystemAuthorization
from screencap.errors import CaptureError
from screencap.notify import DesktopNotifier
from screencap.permissions import PermissionState
from screencap.wayland import EX_NOPERM

from .test_wayland import _fake_helper, _install_helper


class FakeNotify:
    """Stand-in for gi.repository.Notify."""

    class Urgency:
        LOW = 0

    class Notification:
        shown = []

        def __init__(self, title, body, icon):
            self.title = title
            self.body = body

        @classmethod
        def new(cls, title, body, icon):
            return cls(title, body, icon)

        def set_urgency(self, urgency):
            self.urgency = urgency

        def show(self):
            FakeNotify.Notification.shown.append((self.title, self.body))

    caps = ["body", "actions"]
    init_ok = True

    @classmethod
    def is_initted(cls):
        return False

    @classmethod
    def init(cls, app_name):
        return cls.init_ok

    @classmethod
    def get_server_caps(cls):
        return cls.caps


@pytest.fixture
def fake_notify(monkeypatch):
    FakeNotify.caps = ["body", "actions"]
    FakeNotify.init_ok = True
    FakeNotify.Notification.shown = []
    monkeypatch.setattr(notify, "_notify_module", lambda: FakeNotify)
    return FakeNotify


class TestDesktopNotifier:
    @pytest.mark.asyncio
    async def test_authorized_with_body_support(self, fake_notify):
        assert await DesktopNotifier().query_state() is PermissionState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_summary_only_server_is_provisional(self, fake_notify):
        fake_notify.caps = ["actions"]

        assert await DesktopNotifier().query_state() is PermissionState.PROVISIONAL

    @pytest.mark.asyncio
    async def test_no_caps_is_not_determined(self, fake_notify):
        fake_notify.caps = []

        assert await DesktopNotifier().query_state() is PermissionState.NOT_DETERMINED

    @pytest.mark.asyncio
    async def test_init_refused_is_denied(self, fake_notify):
        fake_notify.init_ok = False

        assert await DesktopNotifier().request() is PermissionState.DENIED

    @pytest.mark.asyncio
    async def test_missing_pygobject_is_unknown(self, monkeypatch):
        def missing():
            raise ImportError("No module named 'gi'")

        monkeypatch.setattr(notify, "_notify_module", missing)

        assert await DesktopNotifier().query_state() is PermissionState.UNKNOWN

    @pytest.mark.asyncio
    async def test_notify_shows(self, fake_notify):
        await DesktopNotifier().notify("Screenshot Captured", "Saved to a.png")

        assert fake_notify.Notification.shown == [("Screenshot Captured", "Saved to a.png")]

    @pytest.mark.asyncio
    async def test_notify_raises_when_server_refuses(self, fake_notify):
        fake_notify.init_ok = False

        with pytest.raises(RuntimeError):
            await DesktopNotifier().notify("t", "b")


class TestSystemAuthorization:
    @pytest.mark.asyncio
    async def test_screen_authorized_when_outputs_list(self, config, tmp_path, fake_notify):
        _fake_helper(config, tmp_path)

        assert await SystemAuthorization(config).query_screen() is PermissionState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_screen_refusal_raises_authorization_error(self, config, fake_notify):
        _install_helper(config, f"exit {EX_NOPERM}\n")

        with pytest.raises(CaptureError) as exc_info:
            await SystemAuthorization(config).query_screen()

        assert exc_info.value.authorization

    @pytest.mark.asyncio
    async def test_notifications_delegate_to_notifier(self, config, fake_notify):
        fake_notify.caps = ["actions"]
        source = SystemAuthorization(config)

        assert await source.query_notifications() is PermissionState.PROVISIONAL
        assert await source.request_notifications() is PermissionState.PROVISIONAL
