import json

from indigo.audit_logger import AuditLogger
from indigo.event_bus import EventBus, IndigoEvent


def test_event_bus_pub_sub():
    test_bus = EventBus()
    received_events: list[IndigoEvent] = []

    def dummy_subscriber(event: IndigoEvent):
        received_events.append(event)

    test_bus.subscribe(dummy_subscriber)

    test_bus.emit(
        event_type="loop.state",
        source="loop",
        payload={"state": "building_context"},
        run_id="run-1",
    )

    assert len(received_events) == 1

    event = received_events[0]
    assert event.event_type == "loop.state"
    assert event.source == "loop"
    assert event.run_id == "run-1"
    assert event.payload == {"state": "building_context"}

    # auto-generated fields
    assert isinstance(event.event_id, str)
    assert event.timestamp is not None


def test_failing_subscriber_does_not_stop_delivery():
    test_bus = EventBus()
    received = []

    def broken(event):
        raise OSError("disk full")

    test_bus.subscribe(broken)
    test_bus.subscribe(received.append)

    test_bus.emit(event_type="loop.result", source="loop")

    assert len(received) == 1
    assert test_bus.failed_deliveries == 1


def test_unsubscribe():
    test_bus = EventBus()
    received = []
    test_bus.subscribe(received.append)
    test_bus.unsubscribe(received.append)
    test_bus.unsubscribe(received.append)

    test_bus.emit(event_type="loop.finished", source="loop")
    assert received == []


def test_audit_logger_writes_jsonl(tmp_path):
    test_bus = EventBus()
    log_path = tmp_path / "nested" / "audit.jsonl"
    audit = AuditLogger(log_path, test_bus)

    test_bus.emit(event_type="loop.started", source="loop", payload={"goal": "close SETI-1"})
    test_bus.emit(event_type="loop.finished", source="loop")
    audit.close()
    test_bus.emit(event_type="loop.started", source="loop")

    lines = log_path.read_text().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["event_type"] == "loop.started"
    assert first["payload"] == {"goal": "close SETI-1"}
