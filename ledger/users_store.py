"""Identity records (user:<handle>).

Identity management proper lives in the host application; this module is the
thin adapter the ledger needs: create on registration, read for listings and
the leaderboard, toggle bans, change passwords, and hard delete on purge.

Password hashes are scrypt(N=16384, r=8, p=1, 64 bytes) in base64 with a
base64 salt string, so existing records keep verifying.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Any

from ledger import clock
from ledger.errors import AuthError, NotFoundError, ValidationError
from ledger.keys import USER_PREFIX, handle_from_user_key, user_key
from ledger.redis_kv import kv_del, kv_get_json, kv_keys, kv_set_json

log = logging.getLogger("ledger.users")

PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 128


def new_salt() -> str:
    return base64.b64encode(secrets.token_bytes(16)).decode("ascii")


def hash_password(password: str, salt: str) -> str:
    dk = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=16384,
        r=8,
        p=1,
        dklen=64,
    )
    return base64.b64encode(dk).decode("ascii")


def _password_matches(user: dict[str, Any], password: str) -> bool:
    stored = str(user.get("password") or "")
    salt = str(user.get("salt") or "")
    if not stored or not salt:
        return False
    return hmac.compare_digest(stored, hash_password(password, salt))


def check_new_password(password: Any) -> str:
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LEN:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LEN} characters")
    if len(password) > PASSWORD_MAX_LEN:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_LEN} characters")
    return password


async def get_user(handle: str) -> dict[str, Any] | None:
    raw = await kv_get_json(user_key(handle))
    return raw if isinstance(raw, dict) else None


async def user_exists(handle: str) -> bool:
    return (await get_user(handle)) is not None


async def create_user(handle: str, *, name: str | None = None, password: str | None = None) -> dict[str, Any]:
    """Write a fresh identity record. Password-less records are external (OAuth) identities."""
    salt = new_salt() if password else ""
    user = {
        "handle": handle,
        "name": (name or "").strip() or handle,
        "created": clock.now_ms(),
        "password": hash_password(password, salt) if password else "",
        "salt": salt,
        "admin": False,
        "enabled": True,
    }
    await kv_set_json(user_key(handle), user)
    log.info("Created identity record for %s", handle)
    return user


async def delete_user(handle: str) -> bool:
    return bool(await kv_del(user_key(handle)))


async def list_user_handles() -> list[str]:
    return [handle_from_user_key(k) for k in await kv_keys(USER_PREFIX)]


async def toggle_ban(handle: str) -> bool:
    """Flip the enabled flag. Returns the new value."""
    user = await get_user(handle)
    if user is None:
        raise NotFoundError("User does not exist")
    user["enabled"] = not bool(user.get("enabled", True))
    await kv_set_json(user_key(handle), user)
    log.info("User %s enabled=%s", handle, user["enabled"])
    return bool(user["enabled"])


async def verify_login(handle: str, password: str) -> dict[str, Any]:
    user = await get_user(handle)
    if user is None or user.get("enabled") is False:
        raise NotFoundError("User does not exist or is disabled")
    if not _password_matches(user, password):
        raise AuthError("Wrong handle or password")
    return user


async def change_password(handle: str, current_password: Any, new_password: Any) -> None:
    if not isinstance(current_password, str) or not current_password:
        raise ValidationError("Current password is required")
    check_new_password(new_password)

    user = await get_user(handle)
    if user is None:
        raise NotFoundError("User does not exist")
    if not _password_matches(user, current_password):
        raise AuthError("Current password is wrong")

    salt = new_salt()
    user["password"] = hash_password(new_password, salt)
    user["salt"] = salt
    user["passwordChangedAt"] = clock.now_ms()
    await kv_set_json(user_key(handle), user)
    log.info("Password changed for %s", handle)
