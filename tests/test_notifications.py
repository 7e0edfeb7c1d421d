"""Tests for notification delivery and the audit log."""

import json
import threading
import uuid
from datetime import datetime, timezone

from lifeledger.ledger import Ledger
from lifeledger.models.notification import LedgerNotification, NotificationKind
from lifeledger.notifications import AuditLogWriter, NotificationBus, read_notifications_tail


def _notification(index: int) -> LedgerNotification:
    return LedgerNotification(
        notification_id=str(uuid.uuid4()),
        kind=NotificationKind.EVENT_RECORDED,
        ts=datetime(2026, 1, 15, 9, 0, index, tzinfo=timezone.utc),
        event_id=index + 1,
        identity="bob",
        actor="bob",
        event_type="birth",
    )


def test_bus_delivers_in_publish_order(bus, received):
    for i in range(20):
        bus.publish(_notification(i))
    bus.drain()

    assert [n.event_id for n in received] == list(range(1, 21))


def test_failing_subscriber_does_not_stop_others(bus, received, caplog):
    """Test that a raising subscriber is logged and later subscribers still run."""

    def broken(notification):
        raise RuntimeError("subscriber down")

    bus.subscribe(broken)
    later = []
    bus.subscribe(later.append)

    bus.publish(_notification(0))
    bus.drain()

    assert len(received) == 1
    assert len(later) == 1
    assert "subscriber down" in caplog.text


def test_publish_does_not_wait_for_subscribers(bus):
    """Test that a blocked subscriber never blocks the publisher."""
    release = threading.Event()
    delivered = []

    def slow(notification):
        release.wait(timeout=5)
        delivered.append(notification)

    bus.subscribe(slow)
    bus.publish(_notification(0))
    bus.publish(_notification(1))

    assert delivered == []
    release.set()
    bus.drain()
    assert len(delivered) == 2


def test_closed_bus_drops_notifications():
    bus = NotificationBus()
    received = []
    bus.subscribe(received.append)
    bus.publish(_notification(0))
    bus.close()
    bus.publish(_notification(1))
    bus.close()

    assert [n.event_id for n in received] == [1]


def test_audit_log_appends_json_lines(state_paths):
    writer = AuditLogWriter(state_paths.notifications_file)
    for i in range(3):
        writer(_notification(i))

    lines = state_paths.notifications_file.read_text().strip().split("\n")
    assert len(lines) == 3
    for i, line in enumerate(lines):
        data = json.loads(line)
        assert data["kind"] == "EVENT_RECORDED"
        assert data["event_id"] == i + 1
        assert data["ts"].endswith("Z") or data["ts"].endswith("+00:00")


def test_ledger_changes_reach_audit_log(state_paths, clock):
    """Test that the audit log records every committed ledger change."""
    bus = NotificationBus()
    bus.subscribe(AuditLogWriter(state_paths.notifications_file))
    ledger = Ledger("admin-alice", bus=bus, clock=clock)

    ledger.record_event("bob", "birth", "Born")
    ledger.verify_event("admin-alice", 1)
    bus.close()

    notifications = read_notifications_tail(state_paths.notifications_file)
    assert [n.kind for n in notifications] == [
        NotificationKind.EVENT_RECORDED,
        NotificationKind.EVENT_VERIFIED,
    ]
    assert notifications[1].identity == "admin-alice"


def test_tail_reads_last_n(state_paths):
    writer = AuditLogWriter(state_paths.notifications_file)
    for i in range(10):
        writer(_notification(i))

    notifications = read_notifications_tail(state_paths.notifications_file, n=4)

    assert [n.event_id for n in notifications] == [7, 8, 9, 10]


def test_tail_skips_malformed_lines(state_paths):
    writer = AuditLogWriter(state_paths.notifications_file)
    writer(_notification(0))
    with open(state_paths.notifications_file, "a") as f:
        f.write("this is not json\n")
        f.write("[1, 2]\n")
        f.write('{"kind": "UNKNOWN"}\n')
    writer(_notification(1))

    notifications = read_notifications_tail(state_paths.notifications_file, n=10)

    assert [n.event_id for n in notifications] == [1, 2]


def test_tail_nonexistent_file(temp_state):
    assert read_notifications_tail(temp_state / "missing.jsonl") == []
