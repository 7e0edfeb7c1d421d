"""Life Ledger - append-only, access-controlled record of life events."""

from .errors import (
    AlreadyVerified,
    AlreadyVerifier,
    CannotRemoveAdmin,
    InvalidInput,
    LedgerError,
    NotAVerifier,
    NotFound,
    SelfVerificationForbidden,
    Unauthorized,
)
from .ledger import Ledger
from .models import LedgerNotification, LifeEvent, NotificationKind

__all__ = [
    "Ledger",
    "LifeEvent",
    "LedgerNotification",
    "NotificationKind",
    # Errors
    "LedgerError",
    "InvalidInput",
    "NotFound",
    "Unauthorized",
    "AlreadyVerified",
    "SelfVerificationForbidden",
    "AlreadyVerifier",
    "NotAVerifier",
    "CannotRemoveAdmin",
]
