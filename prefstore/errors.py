from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Classification for error logging."""

    NETWORK = "network"
    PROTOCOL = "protocol"
    STORAGE = "storage"
    CRYPTO = "crypto"
    VALIDATION = "validation"


class PrefStoreError(Exception):
    """Base class for errors raised by the preference store."""


class ValidationError(PrefStoreError, ValueError):
    """Rejected input. Raised before any state is mutated."""


class NotFoundError(PrefStoreError, LookupError):
    """A record, friend or invite code required by an operation does not exist."""


class InviteCodeAmbiguousError(NotFoundError):
    """More than one record shares the requested invite code."""

    def __init__(self, code: str, matches: int) -> None:
        super().__init__(f"invite code {code!r} matches {matches} users")
        self.code = code
        self.matches = matches


class PersistenceError(PrefStoreError):
    """Loading or saving the remote document failed."""


class TransportError(PersistenceError):
    """The remote document service could not be reached."""


class TransientError(TransportError):
    """The remote call timed out; retrying later may succeed."""


class RemoteStatusError(PersistenceError):
    """The remote document service answered with a non-success status.

    The response body is deliberately not kept.
    """

    def __init__(self, operation: str, status_code: int) -> None:
        super().__init__(f"{operation} failed with status {status_code}")
        self.operation = operation
        self.status_code = status_code


class MalformedDocumentError(PersistenceError):
    """The remote document is not a valid preference document."""


class CryptoError(PrefStoreError):
    """A value could not be encrypted or decrypted with the configured key."""
