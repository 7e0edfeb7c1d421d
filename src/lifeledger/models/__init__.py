"""Pydantic models for the life ledger."""

from .event import LifeEvent
from .notification import LedgerNotification, NotificationKind

__all__ = [
    "LifeEvent",
    "LedgerNotification",
    "NotificationKind",
]
