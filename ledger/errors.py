# ledger/errors.py
from __future__ import annotations

from typing import Any


class LedgerError(RuntimeError):
    """Base class for ledger/code/registration errors."""

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context)


class ValidationError(LedgerError):
    """Malformed input (bad handle, negative amount, batch size out of range)."""


class AuthError(LedgerError):
    """Credentials did not match."""


class NotFoundError(LedgerError):
    """Unknown code or handle."""


class ConflictError(LedgerError):
    """The request is well-formed but the current state forbids it."""


class CooldownError(ConflictError):
    """Check-in attempted before the rolling 24h window elapsed."""

    def __init__(self, next_check_in_at: int):
        super().__init__("Check-in is cooling down", nextCheckInAt=int(next_check_in_at))
        self.next_check_in_at = int(next_check_in_at)


class InsufficientPointsError(ConflictError):
    """Balance too low for the requested action."""


class CodeUsedError(ConflictError):
    """Code was already consumed."""


class CodeExpiredError(ConflictError):
    """Invite code is past its expiry."""


class HandleTakenError(ConflictError):
    """Registration handle already exists."""


class RegistrationClosedError(LedgerError):
    """Registration is disabled and no valid invite was supplied."""


class CodeGenerationError(LedgerError):
    """Collision retries exhausted while allocating a new code."""


class StorageError(LedgerError):
    """The key-value store is unavailable or failed."""
