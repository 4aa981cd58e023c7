"""Failure taxonomy shared by every capture stage.

Leaf components raise ``CaptureError`` with a structured ``kind``. Whether a
failure is an authorization problem is decided once, where the OS answer is
read, and carried in ``authorization`` so callers never inspect messages.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_DISPLAY = "no_display"
    CAPTURE_FAILED = "capture_failed"
    ENCODE_FAILED = "encode_failed"
    DIRECTORY_UNAVAILABLE = "directory_unavailable"
    WRITE_FAILED = "write_failed"
    NAME_COLLISION = "name_collision"
    BUSY = "busy"
    CANCELLED = "cancelled"


class Stage(str, Enum):
    """Pipeline stage a failure came from."""

    PROBE = "probe"
    ENUMERATE = "enumerate"
    CAPTURE = "capture"
    ENCODE = "encode"
    SAVE = "save"


class Remediation(str, Enum):
    """Which capability the user has to grant before retrying."""

    SCREEN_RECORDING = "screen_recording"
    NOTIFICATIONS = "notifications"
    FILE_ACCESS = "file_access"


class CaptureError(Exception):
    """Raised when a capture stage fails."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str = "",
        stage: Optional[Stage] = None,
        authorization: bool = False,
        remediation: Optional[Remediation] = None,
    ):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail
        self.stage = stage
        self.authorization = authorization
        if remediation is None and authorization:
            remediation = Remediation.SCREEN_RECORDING
        self.remediation = remediation

    def at(self, stage: Stage) -> "CaptureError":
        """Tag the error with a stage unless one is already set."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "detail": self.detail,
            "stage": self.stage.value if self.stage else None,
            "authorization": self.authorization,
            "remediation": self.remediation.value if self.remediation else None,
        }

    def __repr__(self) -> str:
        return f"CaptureError({self.kind.value!r}, {self.detail!r})"
