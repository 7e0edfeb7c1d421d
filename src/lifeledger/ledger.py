"""Append-only, access-controlled life event ledger."""

import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

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
from .identity import validate_identity
from .models.event import LifeEvent
from .models.notification import LedgerNotification, NotificationKind
from .notifications import NotificationBus
from .store import LedgerStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string")
    if not value:
        raise InvalidInput(f"{field} must not be empty")
    return value


class Ledger:
    """The record-and-verify state machine.

    Owns the event table, the per-owner timelines, the verifier set and the
    admin identity. Every mutation runs under one lock and checks all of its
    preconditions before touching state, so a failed call changes nothing.

    When a store is attached it is the source of truth: the in-memory view is
    refreshed whenever the store's revision moved (another handle or process
    wrote to it), and every write re-checks its preconditions inside the
    store's transaction.
    """

    def __init__(
        self,
        admin: str,
        *,
        store: Optional[LedgerStore] = None,
        bus: Optional[NotificationBus] = None,
        clock: Optional[Clock] = None,
    ):
        """Create a ledger, or reopen the one kept in store.

        Args:
            admin: Identity that administers the verifier set
            store: Optional persistence; existing state is loaded from it
            bus: Optional bus that receives a notification per committed change
            clock: Returns the current time; defaults to UTC now

        Raises:
            InvalidInput: If admin is not a well-formed identity
            ValueError: If store already belongs to a different admin, or its
                event ids are not contiguous from 1
        """
        self._admin = validate_identity(admin, field="admin")
        self._store = store
        self._bus = bus
        self._clock = clock or _utc_now
        self._lock = threading.RLock()

        self._revision = -1
        self._next_id = 1
        self._events: dict[int, LifeEvent] = {}
        self._owner_index: dict[str, list[int]] = {}
        self._verifiers: set[str] = {self._admin}

        if store is not None:
            store.set_admin(self._admin)
            self._reload()

    @classmethod
    def open(
        cls,
        db_path: Path,
        admin: str,
        *,
        bus: Optional[NotificationBus] = None,
        clock: Optional[Clock] = None,
    ) -> "Ledger":
        """Open (or create) a ledger persisted in a SQLite file."""
        return cls(admin, store=LedgerStore(db_path), bus=bus, clock=clock)

    def _reload(self) -> None:
        revision, events, verifiers = self._store.load_state()

        next_id = 1
        by_id: dict[int, LifeEvent] = {}
        owner_index: dict[str, list[int]] = {}
        for event in events:
            if event.id != next_id:
                raise ValueError(
                    f"Ledger store {self._store.db_path} is corrupt: expected event id {next_id}, found {event.id}"
                )
            by_id[event.id] = event
            owner_index.setdefault(event.owner, []).append(event.id)
            next_id += 1

        self._revision = revision
        self._next_id = next_id
        self._events = by_id
        self._owner_index = owner_index
        self._verifiers = verifiers | {self._admin}
        logger.debug(
            f"Loaded ledger revision {revision}: {len(by_id)} event(s), {len(self._verifiers)} verifier(s)"
        )

    def _sync(self) -> None:
        """Reload from the store if anyone has written to it since we last looked."""
        if self._store is not None and self._store.get_revision() != self._revision:
            self._reload()

    def _committed(self) -> bool:
        """After a store write: True if it was the only change since our last sync.

        Otherwise the in-memory view is rebuilt from the store and False is returned.
        """
        if self._store is None:
            return True
        revision = self._store.get_revision()
        if revision == self._revision + 1:
            self._revision = revision
            return True
        self._reload()
        return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def verifiers(self) -> frozenset[str]:
        with self._lock:
            self._sync()
            return frozenset(self._verifiers)

    def get_timeline(self, identity: str) -> list[int]:
        """Event ids recorded by identity, in creation order. Empty if none."""
        with self._lock:
            self._sync()
            return list(self._owner_index.get(identity, ()))

    def get_event(self, event_id: int) -> LifeEvent:
        """Return the event with the given id.

        Raises:
            NotFound: If event_id was never assigned
        """
        with self._lock:
            self._sync()
            return self._lookup(event_id)

    def get_total_events(self) -> int:
        with self._lock:
            self._sync()
            return self._next_id - 1

    def is_verifier(self, identity: str) -> bool:
        with self._lock:
            self._sync()
            return identity in self._verifiers

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_event(
        self,
        caller: str,
        event_type: str,
        description: str,
        document_ref: str = "",
    ) -> int:
        """Record a new event owned by caller.

        No role is required. The id counter only advances on success.

        Returns:
            The id assigned to the new event

        Raises:
            InvalidInput: If caller is malformed, event_type or description is
                empty, or document_ref is not a string
        """
        try:
            validate_identity(caller, field="caller")
            _require_text(event_type, "event_type")
            _require_text(description, "description")
            if not isinstance(document_ref, str):
                raise InvalidInput("document_ref must be a string")
        except LedgerError as e:
            raise self._reject("record_event", caller, e)

        with self._lock:
            self._sync()
            created_at = self._clock()
            if self._store is not None:
                event = self._store.append_event(
                    owner=caller,
                    event_type=event_type,
                    description=description,
                    created_at=created_at,
                    document_ref=document_ref,
                )
            else:
                event = LifeEvent(
                    id=self._next_id,
                    owner=caller,
                    event_type=event_type,
                    description=description,
                    created_at=created_at,
                    document_ref=document_ref,
                )

            if self._committed():
                self._events[event.id] = event
                self._owner_index.setdefault(caller, []).append(event.id)
                self._next_id = event.id + 1

            logger.info(f"Recorded event {event.id} ({event_type}) for {caller}")
            self._notify(
                NotificationKind.EVENT_RECORDED,
                actor=caller,
                identity=caller,
                event_id=event.id,
                event_type=event_type,
                ts=event.created_at,
            )
            return event.id

    def verify_event(self, caller: str, event_id: int) -> LifeEvent:
        """Attest to an event owned by someone else.

        Returns:
            The verified event

        Raises:
            NotFound: If event_id was never assigned
            AlreadyVerified: If the event has already been verified
            SelfVerificationForbidden: If caller owns the event
            Unauthorized: If caller is not a verifier
        """
        with self._lock:
            self._sync()
            try:
                event = self._lookup(event_id)
                if event.verified:
                    raise AlreadyVerified(f"Event {event_id} was already verified by {event.verifier}")
                if caller == event.owner:
                    raise SelfVerificationForbidden(f"{caller} cannot verify their own event {event_id}")
                if caller not in self._verifiers:
                    raise Unauthorized(f"{caller} is not a verifier")
                if self._store is not None:
                    verified = self._store.verify_event(event_id, caller)
                else:
                    verified = event.mark_verified(caller)
            except LedgerError as e:
                raise self._reject("verify_event", caller, e)

            if self._committed():
                self._events[event_id] = verified

            logger.info(f"Event {event_id} verified by {caller}")
            self._notify(
                NotificationKind.EVENT_VERIFIED,
                actor=caller,
                identity=caller,
                event_id=event_id,
            )
            return verified

    def add_verifier(self, caller: str, identity: str) -> None:
        """Grant the verifier role. Admin only.

        Raises:
            Unauthorized: If caller is not the admin
            InvalidInput: If identity is malformed
            AlreadyVerifier: If identity already holds the role
        """
        with self._lock:
            self._sync()
            try:
                if caller != self._admin:
                    raise Unauthorized(f"Only the admin can add verifiers; {caller} is not the admin")
                validate_identity(identity)
                if identity in self._verifiers:
                    raise AlreadyVerifier(f"{identity} is already a verifier")
                if self._store is not None:
                    self._store.add_verifier(identity)
            except LedgerError as e:
                raise self._reject("add_verifier", caller, e)

            if self._committed():
                self._verifiers.add(identity)

            logger.info(f"Added verifier {identity}")
            self._notify(NotificationKind.VERIFIER_ADDED, actor=caller, identity=identity)

    def remove_verifier(self, caller: str, identity: str) -> None:
        """Revoke the verifier role. Admin only; the admin itself is never removed.

        Raises:
            Unauthorized: If caller is not the admin
            CannotRemoveAdmin: If identity is the admin
            NotAVerifier: If identity does not hold the role
        """
        with self._lock:
            self._sync()
            try:
                if caller != self._admin:
                    raise Unauthorized(f"Only the admin can remove verifiers; {caller} is not the admin")
                if identity == self._admin:
                    raise CannotRemoveAdmin("The admin cannot be removed from the verifier set")
                if identity not in self._verifiers:
                    raise NotAVerifier(f"{identity} is not a verifier")
                if self._store is not None:
                    self._store.remove_verifier(identity)
            except LedgerError as e:
                raise self._reject("remove_verifier", caller, e)

            if self._committed():
                self._verifiers.discard(identity)

            logger.info(f"Removed verifier {identity}")
            self._notify(NotificationKind.VERIFIER_REMOVED, actor=caller, identity=identity)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, event_id: Any) -> LifeEvent:
        if (
            isinstance(event_id, bool)
            or not isinstance(event_id, int)
            or not 1 <= event_id < self._next_id
        ):
            raise NotFound(f"Event {event_id} does not exist")
        return self._events[event_id]

    def _reject(self, op: str, caller: Any, error: LedgerError) -> LedgerError:
        logger.debug(f"Rejected {op} from {caller!r}: {error.code}: {error.message}")
        return error

    def _notify(
        self,
        kind: NotificationKind,
        *,
        actor: str,
        identity: str,
        event_id: Optional[int] = None,
        event_type: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> None:
        if self._bus is None:
            return
        self._bus.publish(
            LedgerNotification(
                notification_id=str(uuid.uuid4()),
                kind=kind,
                ts=ts or self._clock(),
                event_id=event_id,
                identity=identity,
                actor=actor,
                event_type=event_type,
            )
        )
