"""Fire-and-forget notification delivery and the append-only audit log."""

import json
import logging
import queue
import threading
from pathlib import Path
from typing import Callable

from rich.console import Console

from .models.notification import LedgerNotification

logger = logging.getLogger(__name__)

console = Console()

Subscriber = Callable[[LedgerNotification], None]

_STOP = object()


class NotificationBus:
    """Delivers notifications to subscribers on a background thread.

    publish() only enqueues, so a slow or failing subscriber never holds up
    the ledger operation that raised the notification. Delivery order is
    publish order.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue()
        self._closed = False
        self._worker = threading.Thread(
            target=self._run, name="lifeledger-notifications", daemon=True
        )
        self._worker.start()

    def subscribe(self, callback: Subscriber) -> None:
        with self._subscribers_lock:
            self._subscribers.append(callback)

    def publish(self, notification: LedgerNotification) -> None:
        if self._closed:
            logger.warning(f"Dropping {notification.kind.value} notification: bus is closed")
            return
        self._queue.put(notification)

    def drain(self) -> None:
        """Block until every notification published so far has been delivered."""
        self._queue.join()

    def close(self) -> None:
        """Deliver what is queued, then stop the worker thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._worker.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, notification: LedgerNotification) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(notification)
            except Exception:
                logger.exception(
                    f"Notification subscriber {callback!r} failed on {notification.kind.value}"
                )


class AuditLogWriter:
    """Append-only notification log.

    Writes notifications to <state>/notifications.jsonl.
    Never truncates or rewrites; only appends.
    """

    def __init__(self, log_path: Path):
        self.log_path = log_path
        self._lock = threading.Lock()

    def __call__(self, notification: LedgerNotification) -> None:
        self.append(notification)

    def append(self, notification: LedgerNotification) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        json_str = json.dumps(notification.model_dump(mode="json"))
        with self._lock:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json_str + "\n")


def read_notifications_tail(log_path: Path, n: int = 20) -> list[LedgerNotification]:
    """Read the last N notifications from the audit log.

    Robust parsing: skips malformed lines with a warning.

    Args:
        log_path: Path to notifications.jsonl file
        n: Number of notifications to read from the end

    Returns:
        List of LedgerNotification objects (last N, oldest first)
    """
    if not log_path.exists():
        return []

    with open(log_path, "r", encoding="utf-8") as f:
        lines = [line.strip() for line in f if line.strip()]

    notifications: list[LedgerNotification] = []
    malformed_count = 0

    for line in lines[-n:] if n > 0 else []:
        try:
            notifications.append(LedgerNotification(**json.loads(line)))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            malformed_count += 1
            console.print(f"[yellow]Warning: Skipping malformed line: {e}[/yellow]")

    if malformed_count > 0:
        console.print(f"[yellow]Skipped {malformed_count} malformed line(s)[/yellow]")

    return notifications
