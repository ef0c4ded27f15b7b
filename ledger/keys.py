"""Storage key naming and handle/code normalization.

Redis keyspace:
- account:<handle>   ledger record (JSON)
- user:<handle>      identity record (JSON)
- redeem:<CODE>      balance top-up code (JSON)
- invite:<CODE>      registration invite code (JSON)
- system:config      global switches (JSON)
"""
from __future__ import annotations

import re
import secrets

from ledger.errors import ValidationError

ACCOUNT_PREFIX = "account:"
USER_PREFIX = "user:"
REDEEM_CODE_PREFIX = "redeem:"
INVITE_CODE_PREFIX = "invite:"
SYSTEM_CONFIG_KEY = "system:config"

MAX_HANDLE_LEN = 64
MIN_HANDLE_LEN = 3

RESERVED_HANDLES = frozenset({
    "admin", "administrator", "root", "system", "moderator", "mod",
    "owner", "support", "help", "service", "api", "www", "ftp",
    "mail", "email", "webmaster", "postmaster", "hostmaster",
    "null", "undefined", "none", "test", "demo", "guest",
    "anonymous", "bot", "robot", "official", "staff",
})
RESERVED_FRAGMENTS = ("admin", "moderator", "support", "official")


def account_key(handle: str) -> str:
    return f"{ACCOUNT_PREFIX}{handle}"


def user_key(handle: str) -> str:
    return f"{USER_PREFIX}{handle}"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def redeem_key(code: str) -> str:
    return f"{REDEEM_CODE_PREFIX}{normalize_code(code)}"


def invite_key(code: str) -> str:
    return f"{INVITE_CODE_PREFIX}{normalize_code(code)}"


def handle_from_user_key(key: str) -> str:
    return key[len(USER_PREFIX):] if key.startswith(USER_PREFIX) else key


def normalize_handle(raw: str | None) -> str | None:
    """Lowercase and restrict to [a-z0-9-_]; other chars become '-'.

    Returns None when nothing usable is left.
    """
    s = str(raw or "").lower()
    s = re.sub(r"[^a-z0-9\-_]", "-", s)
    s = re.sub(r"-{2,}", "-", s)
    s = s.strip("-")[:MAX_HANDLE_LEN]
    return s or None


def sanitize_handle(raw: str | None) -> str:
    """Like normalize_handle, but always yields a handle (used for external identities)."""
    return normalize_handle(raw) or f"user-{secrets.token_hex(3)}"


def validate_new_handle(handle: str) -> str:
    if len(handle) < MIN_HANDLE_LEN:
        raise ValidationError(f"Handle must be at least {MIN_HANDLE_LEN} characters")
    if handle in RESERVED_HANDLES:
        raise ValidationError("This handle is reserved, pick another one")
    if any(frag in handle for frag in RESERVED_FRAGMENTS):
        raise ValidationError("Handle contains a reserved word, pick another one")
    return handle
