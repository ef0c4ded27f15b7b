"""Administrative console operations.

Data layer only; the HTTP handlers in gateway/admin_routes.py call these.
"""
from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Any

from ledger.account_store import as_number, get_account, reset_account
from ledger.audit import audit_log
from ledger.codes_store import code_stats
from ledger.errors import NotFoundError
from ledger.purge import delete_user_content, format_bytes, user_storage_size
from ledger.redis_kv import kv_del, kv_get_json, kv_set_json
from ledger.users_store import get_user, list_user_handles

log = logging.getLogger("ledger.admin")

ADMIN_SESSION_PREFIX = "admin:session:"


@dataclass(frozen=True)
class AdminCredentials:
    username: str
    password: str


def verify_admin_credentials(creds: AdminCredentials, username: Any, password: Any) -> bool:
    if not isinstance(username, str) or not isinstance(password, str):
        return False
    user_ok = hmac.compare_digest(username.encode("utf-8"), creds.username.encode("utf-8"))
    pass_ok = hmac.compare_digest(password.encode("utf-8"), creds.password.encode("utf-8"))
    return user_ok and pass_ok


# ---------------------------------------------------------------------------
# Sessions (bearer tokens, TTL'd in Redis)
# ---------------------------------------------------------------------------

async def create_admin_session(username: str, *, ttl_s: int) -> str:
    token = secrets.token_urlsafe(32)
    await kv_set_json(f"{ADMIN_SESSION_PREFIX}{token}", {"user": username}, ex=int(ttl_s))
    audit_log("admin_login", actor=username)
    return token


async def get_admin_session(token: str | None) -> str | None:
    """Return the admin username for a live token, else None."""
    if not token:
        return None
    data = await kv_get_json(f"{ADMIN_SESSION_PREFIX}{token}")
    if not isinstance(data, dict):
        return None
    return str(data.get("user") or "") or None


async def drop_admin_session(token: str | None) -> None:
    if token:
        await kv_del(f"{ADMIN_SESSION_PREFIX}{token}")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def list_users() -> list[dict[str, Any]]:
    """Identity + ledger + storage size for every user, newest first."""
    users: list[dict[str, Any]] = []
    for handle in await list_user_handles():
        user = await get_user(handle)
        if user is None:
            continue
        ledger = await get_account(handle)
        size = await user_storage_size(handle)
        users.append({
            "handle": user.get("handle") or handle,
            "name": user.get("name") or handle,
            "enabled": user.get("enabled", True) is not False,
            "admin": bool(user.get("admin", False)),
            "created": user.get("created"),
            "points": as_number(ledger.points) if ledger else 0,
            "accessOn": bool(ledger.access_on) if ledger else False,
            "storageSize": size,
            "storageSizeFormatted": format_bytes(size),
        })
    users.sort(key=lambda u: int(u.get("created") or 0), reverse=True)
    return users


async def delete_user_data(handle: str, *, actor: str | None = None) -> None:
    """Wipe the content directory and zero the ledger; the identity stays."""
    if await get_user(handle) is None and await get_account(handle) is None:
        raise NotFoundError("User does not exist")
    await delete_user_content(handle)
    await reset_account(handle, actor=actor)
    audit_log("admin_delete_user_data", handle=handle, actor=actor)
    log.info("Admin %s deleted data for %s", actor or "?", handle)


async def get_stats() -> dict[str, Any]:
    handles = await list_user_handles()
    active_users = 0
    total_points = 0.0
    total_storage = 0
    for handle in handles:
        user = await get_user(handle)
        if user and user.get("enabled", True) is not False:
            active_users += 1
        ledger = await get_account(handle)
        if ledger:
            total_points += float(ledger.points or 0)
        total_storage += await user_storage_size(handle)

    codes = await code_stats()
    return {
        "totalUsers": len(handles),
        "activeUsers": active_users,
        "totalPoints": total_points,
        "totalStorage": total_storage,
        "totalStorageFormatted": format_bytes(total_storage),
        "redeemCodes": codes["redeem"],
        "inviteCodes": codes["invite"],
    }
