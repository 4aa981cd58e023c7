"""Boundary to the wayland-capture helper binary.

Every call into the compositor goes through this module. Failures are
classified here, once, into a CaptureError kind: the helper exits with
EX_NOPERM when the compositor refuses screen access, which is reported as
an authorization failure.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

from .config import Config
from .errors import CaptureError, ErrorKind, Remediation

log = logging.getLogger(__name__)

EX_NOPERM = getattr(os, "EX_NOPERM", 77)


def classify_failure(returncode: int, stderr: str, action: str) -> CaptureError:
    """Turn a non-zero helper exit into a structured error."""
    detail = f"{action} failed (exit {returncode})"
    if stderr.strip():
        detail = f"{detail}: {stderr.strip()}"
    if returncode == EX_NOPERM:
        return CaptureError(
            ErrorKind.PERMISSION_DENIED,
            detail,
            authorization=True,
            remediation=Remediation.SCREEN_RECORDING,
        )
    return CaptureError(ErrorKind.CAPTURE_FAILED, detail)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    # Reap even if cancelled again.
    await asyncio.shield(proc.wait())
    log.debug("wayland-capture pid %s killed", proc.pid)


async def run_helper(
    config: Config,
    *args: str,
    action: str = "wayland-capture",
    timeout: Optional[float] = None,
) -> str:
    """Run wayland-capture and return its stdout.

    Raises:
        CaptureError: If the binary is missing, times out or exits non-zero
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            config.wayland_capture,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise CaptureError(
            ErrorKind.CAPTURE_FAILED,
            f"wayland-capture not found: {config.wayland_capture}",
        )
    except OSError as e:
        raise CaptureError(ErrorKind.CAPTURE_FAILED, f"Could not start wayland-capture: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        raise CaptureError(ErrorKind.CAPTURE_FAILED, f"wayland-capture {action} timed out")
    finally:
        # Timed out here or cancelled by the caller.
        if proc.returncode is None:
            await _kill(proc)

    out = stdout.decode(errors="replace")
    err = stderr.decode(errors="replace")
    if proc.returncode != 0:
        raise classify_failure(proc.returncode, err, action)
    log.debug("wayland-capture %s ok", " ".join(args))
    return out


async def list_outputs(config: Config, timeout: Optional[float] = None) -> list[dict]:
    """List all available outputs.

    Returns:
        List of output dicts with keys: name, description, width, height, x, y
    """
    out = await run_helper(config, "--list", "--json", action="list", timeout=timeout)
    try:
        data = json.loads(out)
    except json.JSONDecodeError as e:
        raise CaptureError(ErrorKind.CAPTURE_FAILED, f"Unreadable output list: {e}")
    if not isinstance(data, dict):
        raise CaptureError(ErrorKind.CAPTURE_FAILED, "Unreadable output list: not an object")
    return data.get("outputs", [])


async def capture_output(
    config: Config,
    output_name: str,
    dest: Path,
    timeout: Optional[float] = None,
) -> Path:
    """Capture one output into a PNG file at ``dest``."""
    await run_helper(
        config,
        "--output", output_name,
        "--output-file", str(dest),
        action="capture",
        timeout=timeout,
    )
    if not dest.exists() or dest.stat().st_size == 0:
        raise CaptureError(ErrorKind.CAPTURE_FAILED, f"No image written for {output_name}")
    return dest
