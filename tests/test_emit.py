"""Tests for the structured event emitter."""

import json

import pytest

from screencap import emit


@pytest.fixture
def captured():
    events = []
    emit.add_handler(events.append)
    yield events
    emit.remove_handler(events.append)


def test_handlers_receive_events(captured):
    emit.emit("artifact.created", {"file_path": "/tmp/a.png"})

    assert captured[0]["event_type"] == "artifact.created"
    assert captured[0]["data"] == {"file_path": "/tmp/a.png"}
    assert captured[0]["source"]["tool"]


def test_broken_handler_does_not_raise(captured):
    def broken(event):
        raise RuntimeError("transport down")

    emit.add_handler(broken)
    try:
        emit.emit("shutdown", {})
    finally:
        emit.remove_handler(broken)

    assert [e["event_type"] for e in captured] == ["shutdown"]


def test_stderr_json_lines(capsys):
    emit.configure("screencap-test", stderr=True)
    try:
        emit.emit("operation.started", {"operation_id": "1"})
    finally:
        emit.configure("screencap", stderr=False)

    line = capsys.readouterr().err.strip()
    event = json.loads(line)
    assert event["source"]["tool"] == "screencap-test"
    assert event["data"]["operation_id"] == "1"


@pytest.mark.asyncio
async def test_capture_emits_lifecycle(make_orchestrator, captured):
    await make_orchestrator().capture()

    types = [e["event_type"] for e in captured]
    assert types == [
        "operation.started",
        "permissions.refreshed",
        "artifact.created",
        "operation.completed",
    ]


def test_catalog_describes_every_event():
    types = [entry["event_type"] for entry in emit.EVENT_CATALOG]

    assert "artifact.discarded" in types
    assert len(types) == len(set(types))
    assert all(entry["description"] for entry in emit.EVENT_CATALOG)
