"""Capture pipeline: probe, enumerate, capture, save.

The orchestrator is the only thing UI layers talk to. It runs at most one
capture at a time, publishes every state transition to its subscribers and
always comes back to IDLE, whatever happened.

State machine::

    IDLE -> PROBING -> READY -> CAPTURING -> SAVING -> DONE -> IDLE
                   \\-> BLOCKED -> IDLE
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from PIL import Image

from .config import Config
from .displays import Display
from .emit import emit
from .errors import CaptureError, ErrorKind, Remediation, Stage
from .output import FileSink, SaveTarget
from .permissions import PermissionProbe, PermissionState, ProbeResult

log = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    READY = "ready"
    BLOCKED = "blocked"
    CAPTURING = "capturing"
    SAVING = "saving"
    DONE = "done"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of one capture request."""

    status: ResultStatus
    paths: tuple = ()
    kind: Optional[ErrorKind] = None
    detail: str = ""
    stage: Optional[Stage] = None
    remediation: Optional[Remediation] = None

    @classmethod
    def success(cls, paths) -> "CaptureResult":
        return cls(ResultStatus.SUCCESS, paths=tuple(paths))

    @classmethod
    def cancelled(cls) -> "CaptureResult":
        return cls(ResultStatus.CANCELLED, kind=ErrorKind.CANCELLED, detail="Capture cancelled")

    @classmethod
    def failed(cls, error: CaptureError) -> "CaptureResult":
        return cls(
            ResultStatus.FAILED,
            kind=error.kind,
            detail=error.detail,
            stage=error.stage,
            remediation=error.remediation,
        )

    @classmethod
    def busy(cls) -> "CaptureResult":
        return cls(ResultStatus.FAILED, kind=ErrorKind.BUSY, detail="A capture is already running")

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @property
    def path(self) -> Optional[Path]:
        return self.paths[0] if self.paths else None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "paths": [str(p) for p in self.paths],
            "kind": self.kind.value if self.kind else None,
            "detail": self.detail,
            "stage": self.stage.value if self.stage else None,
            "remediation": self.remediation.value if self.remediation else None,
        }


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view rendered by UI layers."""

    screen_state: PermissionState
    notify_state: PermissionState
    state: OrchestratorState
    last_result: Optional[CaptureResult] = None
    remediation: Optional[Remediation] = None
    capture_count: int = 0
    last_capture_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "screen_state": self.screen_state.value,
            "notify_state": self.notify_state.value,
            "state": self.state.value,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "remediation": self.remediation.value if self.remediation else None,
            "capture_count": self.capture_count,
            "last_capture_at": self.last_capture_at.isoformat() if self.last_capture_at else None,
        }


class Enumerator(Protocol):
    async def list(self) -> list[Display]: ...


class Engine(Protocol):
    async def capture(self, display: Display) -> Image.Image: ...


class Notifier(Protocol):
    async def notify(self, title: str, body: str) -> None: ...


StatusListener = Callable[[StatusSnapshot], None]


class _Cancelled(Exception):
    pass


def _blocking_error(probe: ProbeResult) -> CaptureError:
    """Error reported when the probe leaves screen capture unusable.

    Privacy-settings remediation applies only when the authorization source
    answered, or when the boundary marked its failure as a refusal. Other
    query failures (helper missing, timeout) keep their own kind.
    """
    error = probe.screen_error
    detail = f"Screen recording is {probe.screen.value}"
    if error is None or error.authorization:
        if error is not None:
            detail = f"{detail}: {error.detail}"
        return CaptureError(
            ErrorKind.PERMISSION_DENIED,
            detail,
            Stage.PROBE,
            authorization=True,
            remediation=Remediation.SCREEN_RECORDING,
        )
    return CaptureError(
        error.kind,
        f"Screen access could not be checked: {error.detail}",
        Stage.PROBE,
        remediation=error.remediation,
    )


@dataclass
class _Request:
    all_displays: bool
    preferred_dir: Optional[Path]
    cancelled: bool = False
    engine_started: bool = False
    operation_id: str = field(default_factory=lambda: str(uuid.uuid4()))


class CaptureOrchestrator:
    """Sequences probe, capture and save into one user-triggerable operation."""

    IDLE_STATES = (OrchestratorState.IDLE, OrchestratorState.DONE)

    def __init__(
        self,
        config: Config,
        probe: PermissionProbe,
        enumerator: Enumerator,
        engine: Engine,
        sink: FileSink,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config
        self.probe = probe
        self.enumerator = enumerator
        self.engine = engine
        self.sink = sink
        self.notifier = notifier

        self._state = OrchestratorState.IDLE
        self._last_result: Optional[CaptureResult] = None
        self._remediation: Optional[Remediation] = None
        self._capture_count = 0
        self._last_capture_at: Optional[datetime] = None
        self._listeners: list[StatusListener] = []
        self._request: Optional[_Request] = None
        self._notify_tasks: set[asyncio.Task] = set()
        self._late_saves: set[asyncio.Task] = set()

    # -- status surface -------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    def status(self) -> StatusSnapshot:
        return StatusSnapshot(
            screen_state=self.probe.screen_state,
            notify_state=self.probe.notify_state,
            state=self._state,
            last_result=self._last_result,
            remediation=self._remediation,
            capture_count=self._capture_count,
            last_capture_at=self._last_capture_at,
        )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener for every state transition.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.warning("Status listener failed: %s", e)

    def _set_state(self, state: OrchestratorState) -> None:
        log.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        self._publish()

    # -- permissions ----------------------------------------------------

    async def _probe(self) -> ProbeResult:
        self._set_state(OrchestratorState.PROBING)
        result = await self.probe.refresh()
        emit("permissions.refreshed", result.to_dict())
        if result.screen.usable:
            self._remediation = None
        else:
            self._remediation = _blocking_error(result).remediation
        return result

    async def recheck(self) -> ProbeResult:
        """Re-query permissions outside of a capture.

        Raises:
            CaptureError: BUSY if a capture is in flight
        """
        if self._state not in self.IDLE_STATES:
            raise CaptureError(ErrorKind.BUSY, "A capture is already running")
        try:
            return await self._probe()
        finally:
            self._set_state(OrchestratorState.IDLE)

    async def request_notifications(self) -> PermissionState:
        state = await self.probe.request_notifications()
        self._publish()
        return state

    # -- capture --------------------------------------------------------

    def cancel(self) -> bool:
        """Discard the pending request if the engine has not been invoked.

        Returns:
            True if the in-flight request will end as CANCELLED
        """
        request = self._request
        if request is None or request.engine_started:
            return False
        request.cancelled = True
        log.debug("Capture %s cancelled", request.operation_id)
        return True

    def _check_cancelled(self, request: _Request) -> None:
        if request.cancelled:
            raise _Cancelled()

    async def capture(
        self,
        all_displays: Optional[bool] = None,
        preferred_dir: Optional[Path] = None,
    ) -> CaptureResult:
        """Run one capture and return its result.

        Never raises for pipeline failures; they come back as FAILED results.
        A request made while another is running returns BUSY at once.
        """
        if self._state not in self.IDLE_STATES:
            log.debug("Capture rejected: state is %s", self._state.value)
            return CaptureResult.busy()

        if all_displays is None:
            all_displays = self.config.capture_all_displays
        request = _Request(all_displays=all_displays, preferred_dir=preferred_dir)
        self._request = request
        # Claim the pipeline before the first suspension point.
        self._state = OrchestratorState.PROBING

        emit("operation.started", {
            "operation_type": "screenshot.capture",
            "operation_id": request.operation_id,
            "all_displays": all_displays,
        })

        try:
            result = await self._run(request)
        except BaseException:
            self._set_state(OrchestratorState.IDLE)
            raise
        finally:
            self._request = None

        self._finish(request, result)
        return result

    async def _run(self, request: _Request) -> CaptureResult:
        paths: list[Path] = []
        try:
            if self.probe.is_stale(self.config.permission_ttl):
                probe = await self._probe()
            else:
                probe = self.probe.last_result
            self._check_cancelled(request)

            if not probe.screen.usable:
                self._set_state(OrchestratorState.BLOCKED)
                return CaptureResult.failed(_blocking_error(probe))

            self._set_state(OrchestratorState.READY)
            displays = await self.enumerator.list()
            self._check_cancelled(request)
            if not request.all_displays:
                displays = displays[:1]

            for index, display in enumerate(displays, start=1):
                self._set_state(OrchestratorState.CAPTURING)
                request.engine_started = True
                image = await self._capture(display)

                self._set_state(OrchestratorState.SAVING)
                target = await self._save(image, request, index if request.all_displays else None)
                paths.append(target.path)
                emit("artifact.created", {
                    "file_path": str(target.path),
                    "file_type": "screenshot",
                    "metadata": {
                        "display": display.id,
                        "width": image.width,
                        "height": image.height,
                    },
                })
            return CaptureResult.success(paths)

        except _Cancelled:
            return CaptureResult.cancelled()
        except CaptureError as e:
            if e.authorization:
                self.probe.invalidate()
            self._discard(paths, request)
            return CaptureResult.failed(e)
        except BaseException:
            self._discard(paths, request)
            raise

    async def _capture(self, display: Display) -> Image.Image:
        try:
            return await asyncio.wait_for(
                self.engine.capture(display),
                timeout=self.config.capture_timeout,
            )
        except asyncio.TimeoutError:
            raise CaptureError(
                ErrorKind.CAPTURE_FAILED,
                f"Capture of {display.id} timed out",
                Stage.CAPTURE,
            )

    async def _save(self, image: Image.Image, request: _Request, index: Optional[int]) -> SaveTarget:
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self.sink.save, image, request.preferred_dir, index)
        )
        try:
            # The thread cannot be interrupted; shield it so it can be tracked.
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.config.save_timeout)
        except asyncio.TimeoutError:
            self._abandon_save(task, request)
            raise CaptureError(ErrorKind.WRITE_FAILED, "Save timed out", Stage.SAVE)
        except asyncio.CancelledError:
            self._abandon_save(task, request)
            raise
        except OSError as e:
            raise CaptureError(ErrorKind.WRITE_FAILED, str(e), Stage.SAVE)

    def _abandon_save(self, task: asyncio.Task, request: _Request) -> None:
        """Remove whatever an abandoned save publishes once its thread returns."""
        self._late_saves.add(task)
        task.add_done_callback(lambda t: self._late_save_done(t, request))

    def _late_save_done(self, task: asyncio.Task, request: _Request) -> None:
        self._late_saves.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.debug("Abandoned save failed: %s", exc)
            return
        self._discard([task.result().path], request)

    def _discard(self, paths: list[Path], request: _Request) -> None:
        """Delete files written by an invocation that did not succeed."""
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning("Could not remove partial capture %s: %s", path, e)
                continue
            log.info("Removed partial capture: %s", path)
            emit("artifact.discarded", {
                "file_path": str(path),
                "operation_id": request.operation_id,
            })

    def _finish(self, request: _Request, result: CaptureResult) -> None:
        self._last_result = result
        if result.ok:
            self._capture_count += 1
            self._last_capture_at = datetime.now()
        elif result.remediation is not None:
            self._remediation = result.remediation

        if result.status is ResultStatus.FAILED:
            log.error("Capture failed (%s): %s", result.kind.value, result.detail)
            emit("error.handled", {
                "kind": result.kind.value,
                "detail": result.detail,
                "stage": result.stage.value if result.stage else None,
                "authorization": result.kind is ErrorKind.PERMISSION_DENIED,
                "remediation": result.remediation.value if result.remediation else None,
            })

        emit("operation.completed", {
            "operation_type": "screenshot.capture",
            "operation_id": request.operation_id,
            "success": result.ok,
            "outputs": [{"file_path": str(p), "file_type": "screenshot"} for p in result.paths],
            "error": None if result.ok else result.to_dict(),
        })

        self._announce(result)

        if self._state is not OrchestratorState.BLOCKED and result.status is not ResultStatus.CANCELLED:
            self._set_state(OrchestratorState.DONE)
        self._set_state(OrchestratorState.IDLE)

    # -- notifications --------------------------------------------------

    def _announce(self, result: CaptureResult) -> None:
        if self.notifier is None or not self.config.enable_notification:
            return
        if result.ok:
            names = ", ".join(p.name for p in result.paths)
            title, body = "Screenshot Captured", f"Saved to {names}"
        elif result.status is ResultStatus.FAILED:
            title, body = "Screenshot Failed", result.detail or result.kind.value
        else:
            return
        self._spawn_notification(title, body)

    def _spawn_notification(self, title: str, body: str) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self.notifier.notify(title, body))
        except Exception as e:
            log.warning("Could not schedule notification: %s", e)
            return
        self._notify_tasks.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notify_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("Notification delivery failed: %s", exc)

    async def drain_notifications(self) -> None:
        """Wait for pending notification tasks; used before shutdown."""
        if self._notify_tasks:
            await asyncio.gather(*self._notify_tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for notifications and for abandoned saves to be cleaned up."""
        await self.drain_notifications()
        if self._late_saves:
            await asyncio.gather(*self._late_saves, return_exceptions=True)
