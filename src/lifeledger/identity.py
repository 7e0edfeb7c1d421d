"""Identity validation.

Identities are opaque strings handed to the ledger by whatever transport or
auth layer sits in front of it. The ledger only compares them for equality.
"""

from typing import Any

from .errors import InvalidInput

MAX_IDENTITY_LENGTH = 256


def validate_identity(value: Any, *, field: str = "identity") -> str:
    """Return value unchanged if it is a well-formed identity.

    Args:
        value: Candidate identity
        field: Name used in the error message

    Returns:
        The identity string

    Raises:
        InvalidInput: If value is None, not a string, empty, padded with
            whitespace, or longer than MAX_IDENTITY_LENGTH
    """
    if value is None:
        raise InvalidInput(f"{field} is required")
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string")
    if not value:
        raise InvalidInput(f"{field} must not be empty")
    if value != value.strip():
        raise InvalidInput(f"{field} must not have leading or trailing whitespace")
    if len(value) > MAX_IDENTITY_LENGTH:
        raise InvalidInput(f"{field} must be at most {MAX_IDENTITY_LENGTH} characters")
    return value
