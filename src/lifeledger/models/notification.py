"""Pydantic models for ledger notifications."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    """State changes that are announced to observers."""

    EVENT_RECORDED = "EVENT_RECORDED"
    EVENT_VERIFIED = "EVENT_VERIFIED"
    VERIFIER_ADDED = "VERIFIER_ADDED"
    VERIFIER_REMOVED = "VERIFIER_REMOVED"


class LedgerNotification(BaseModel):
    """Announcement of a committed state change.

    Written as JSONL to <state>/notifications.jsonl by the audit log.
    Never mutate or delete; only append.
    """

    notification_id: str = Field(description="Unique notification identifier (uuid4)")
    kind: NotificationKind = Field(description="What changed")
    ts: datetime = Field(description="Timestamp of the change (UTC)")
    event_id: int | None = Field(default=None, description="Related event id if applicable")
    identity: str = Field(description="Owner, verifier, or subject identity")
    actor: str = Field(description="Caller that performed the change")
    event_type: str | None = Field(default=None, description="Event type for EVENT_RECORDED")

    model_config = {"frozen": True}
