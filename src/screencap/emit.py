"""Structured events for the capture pipeline.

Every capture invocation produces a small, fixed sequence of events that
scripts can follow without parsing log lines:

    operation.started -> permissions.refreshed -> artifact.created (per file)
        -> [error.handled] -> operation.completed

``artifact.discarded`` follows ``artifact.created`` when a later stage of the
same invocation fails and the file is removed again. ``config.resolved`` and
``shutdown`` bracket the CLI process.

Each event is one dict::

    {"event_type": "...", "timestamp": "...", "source": {"tool": "..."}, "data": {...}}

With ``--events`` the CLI writes them as JSON lines to stderr; tests and
embedding UIs subscribe with add_handler().
"""

import json
import sys
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], None]


def _entry(event_type: str, description: str, *fields: str) -> dict:
    return {"event_type": event_type, "description": description, "data_fields": list(fields)}


EVENT_CATALOG = [
    _entry("config.resolved", "Configuration loaded by the CLI",
           "config_path", "source"),
    _entry("permissions.refreshed", "Screen and notification authorization re-queried",
           "screen", "notify", "screen_error", "notify_error", "host_authorization_error"),
    _entry("operation.started", "A capture request claimed the pipeline",
           "operation_type", "operation_id", "all_displays"),
    _entry("artifact.created", "A PNG was published under its final name",
           "file_path", "file_type", "metadata"),
    _entry("artifact.discarded", "A published PNG was removed because its invocation failed",
           "file_path", "operation_id"),
    _entry("error.handled", "A capture ended as FAILED",
           "kind", "detail", "stage", "authorization", "remediation"),
    _entry("operation.completed", "A capture request released the pipeline",
           "operation_type", "operation_id", "success", "outputs", "error"),
    _entry("shutdown", "The CLI process is exiting"),
]

_handlers: List[EventHandler] = []
_source: str = "screencap"
_stderr_enabled: bool = False


def configure(source: str, stderr: bool = True) -> None:
    """Name the emitting tool and switch stderr output on or off."""
    global _source, _stderr_enabled
    _source = source
    _stderr_enabled = stderr


def add_handler(handler: EventHandler) -> None:
    _handlers.append(handler)


def remove_handler(handler: EventHandler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def _build(event_type: str, data: Dict[str, Any], source: Optional[str]) -> dict:
    return {
        "event_type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": {"tool": source or _source},
        "data": data,
    }


def _write_stderr(event: dict) -> None:
    try:
        print(json.dumps(event, default=str), file=sys.stderr, flush=True)
    except (TypeError, ValueError, OSError) as exc:
        logger.debug("Could not write %s event: %s", event["event_type"], exc)


def emit(
    event_type: str,
    data: Dict[str, Any],
    source: Optional[str] = None,
) -> None:
    """Publish one pipeline event.

    Paths and enums in ``data`` are stringified on the stderr transport.
    A failing handler is logged and skipped; emitting never raises into the
    pipeline.
    """
    event = _build(event_type, data, source)

    if _stderr_enabled:
        _write_stderr(event)

    for handler in list(_handlers):
        try:
            handler(event)
        except Exception as exc:
            logger.debug("Event handler %r failed on %s: %s", handler, event_type, exc)
