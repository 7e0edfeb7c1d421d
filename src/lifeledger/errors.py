"""Typed failures raised by the life ledger.

Every precondition violation surfaces as exactly one of these, raised before
any state is touched.
"""


class LedgerError(Exception):
    """Base class for all ledger failures."""

    code = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(LedgerError):
    """Malformed argument: empty required text or an invalid identity."""

    code = "invalid_input"


class NotFound(LedgerError):
    """Referenced event id was never assigned."""

    code = "not_found"


class Unauthorized(LedgerError):
    """Caller lacks the role the operation requires."""

    code = "unauthorized"


class AlreadyVerified(LedgerError):
    code = "already_verified"


class SelfVerificationForbidden(LedgerError):
    """An owner cannot attest to their own event."""

    code = "self_verification_forbidden"


class AlreadyVerifier(LedgerError):
    code = "already_verifier"


class NotAVerifier(LedgerError):
    code = "not_a_verifier"


class CannotRemoveAdmin(LedgerError):
    """The admin is a permanent member of the verifier set."""

    code = "cannot_remove_admin"
