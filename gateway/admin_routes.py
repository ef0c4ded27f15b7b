"""/api/admin/*: administrative console.

Login exchanges the configured credentials for a bearer token; every other
route requires `Authorization: Bearer <token>` and answers 403 without it.
"""
from __future__ import annotations

import logging

from aiohttp import web

from gateway.app import ADMIN_CREDENTIALS, ADMIN_SESSION_TTL, error_response, read_json
from ledger.account_store import admin_adjust, as_number
from ledger.admin import (
    create_admin_session,
    delete_user_data,
    drop_admin_session,
    get_admin_session,
    get_stats,
    list_users,
    verify_admin_credentials,
)
from ledger.audit import audit_log
from ledger.codes_store import (
    KIND_INVITE,
    KIND_REDEEM,
    create_invite_codes,
    create_redeem_codes,
    delete_code,
    list_codes,
)
from ledger.errors import ValidationError
from ledger.keys import normalize_handle
from ledger.system_settings import get_system_config, set_registration_enabled
from ledger.users_store import toggle_ban

log = logging.getLogger("gateway.admin")


def _bearer_token(request: web.Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_admin(request: web.Request) -> str:
    user = await get_admin_session(_bearer_token(request))
    if not user:
        raise web.HTTPForbidden(
            text='{"error":"Admin privileges required"}',
            content_type="application/json",
        )
    return user


def _path_handle(request: web.Request) -> str:
    raw = request.match_info["handle"]
    # Handles name directories on disk; anything that does not survive
    # normalization unchanged is rejected rather than rewritten.
    if normalize_handle(raw) != raw:
        raise ValidationError("Invalid handle")
    return raw


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

async def handle_login(request: web.Request) -> web.Response:
    body = await read_json(request)
    username = body.get("username")
    password = body.get("password")
    if not username or not password:
        raise ValidationError("Username and password are required")

    if not verify_admin_credentials(request.app[ADMIN_CREDENTIALS], username, password):
        audit_log("admin_login", actor=str(username), result="denied")
        return error_response(401, "Wrong username or password")

    token = await create_admin_session(str(username), ttl_s=request.app[ADMIN_SESSION_TTL])
    return web.json_response({"success": True, "token": token})


async def handle_logout(request: web.Request) -> web.Response:
    await drop_admin_session(_bearer_token(request))
    return web.json_response({"success": True})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def handle_users(request: web.Request) -> web.Response:
    await require_admin(request)
    return web.json_response({"users": await list_users()})


async def handle_adjust_points(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    handle = _path_handle(request)
    body = await read_json(request)
    action = body.get("action")
    amount = body.get("amount")
    points = await admin_adjust(handle, action, amount, actor=actor)
    return web.json_response({
        "success": True,
        "points": as_number(points),
        "message": f"Points {action}: {amount}",
    })


async def handle_toggle_ban(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    handle = _path_handle(request)
    enabled = await toggle_ban(handle)
    audit_log("admin_toggle_ban", handle=handle, actor=actor, fields={"enabled": enabled})
    return web.json_response({
        "success": True,
        "enabled": enabled,
        "message": "User unbanned" if enabled else "User banned",
    })


async def handle_delete_data(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    handle = _path_handle(request)
    await delete_user_data(handle, actor=actor)
    return web.json_response({"success": True, "message": "User data deleted"})


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------

async def handle_create_redeem_codes(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    body = await read_json(request)
    codes = await create_redeem_codes(points=body.get("points"), count=body.get("count", 1))
    audit_log("admin_create_redeem_codes", actor=actor, fields={"count": len(codes), "points": body.get("points")})
    return web.json_response({
        "success": True,
        "codes": [{"code": c.code, "points": c.points, "createdAt": c.created_at} for c in codes],
        "message": f"Created {len(codes)} redeem code(s)",
    })


async def handle_list_redeem_codes(request: web.Request) -> web.Response:
    await require_admin(request)
    return web.json_response({"codes": [c.to_dict() for c in await list_codes(KIND_REDEEM)]})


async def handle_delete_redeem_code(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    code = request.match_info["code"]
    await delete_code(KIND_REDEEM, code)
    audit_log("admin_delete_redeem_code", actor=actor, fields={"code": code})
    return web.json_response({"success": True, "message": "Redeem code deleted"})


async def handle_create_invite_codes(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    body = await read_json(request)
    codes = await create_invite_codes(count=body.get("count", 1), expires_in_days=body.get("expiresInDays"))
    audit_log("admin_create_invite_codes", actor=actor, fields={"count": len(codes)})
    return web.json_response({
        "success": True,
        "codes": [{"code": c.code, "createdAt": c.created_at, "expiresAt": c.expires_at} for c in codes],
        "message": f"Created {len(codes)} invite code(s)",
    })


async def handle_list_invite_codes(request: web.Request) -> web.Response:
    await require_admin(request)
    return web.json_response({"codes": [c.to_dict() for c in await list_codes(KIND_INVITE)]})


async def handle_delete_invite_code(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    code = request.match_info["code"]
    await delete_code(KIND_INVITE, code)
    audit_log("admin_delete_invite_code", actor=actor, fields={"code": code})
    return web.json_response({"success": True, "message": "Invite code deleted"})


# ---------------------------------------------------------------------------
# Stats / config
# ---------------------------------------------------------------------------

async def handle_stats(request: web.Request) -> web.Response:
    await require_admin(request)
    return web.json_response(await get_stats())


async def handle_get_config(request: web.Request) -> web.Response:
    await require_admin(request)
    return web.json_response(await get_system_config())


async def handle_set_config(request: web.Request) -> web.Response:
    actor = await require_admin(request)
    body = await read_json(request)
    enabled = body.get("registrationEnabled")
    if not isinstance(enabled, bool):
        raise ValidationError("registrationEnabled must be a boolean")
    cfg = await set_registration_enabled(enabled)
    audit_log("admin_set_registration", actor=actor, fields={"registrationEnabled": enabled})
    log.info("Registration %s by %s", "opened" if enabled else "closed", actor)
    return web.json_response({
        "success": True,
        "config": cfg,
        "message": "Registration opened" if enabled else "Registration closed",
    })


def setup_admin_routes(app: web.Application) -> None:
    app.router.add_post("/api/admin/login", handle_login)
    app.router.add_post("/api/admin/logout", handle_logout)
    app.router.add_get("/api/admin/users", handle_users)
    app.router.add_post("/api/admin/users/{handle}/points", handle_adjust_points)
    app.router.add_post("/api/admin/users/{handle}/toggle-ban", handle_toggle_ban)
    app.router.add_delete("/api/admin/users/{handle}/data", handle_delete_data)
    app.router.add_post("/api/admin/redeem-codes", handle_create_redeem_codes)
    app.router.add_get("/api/admin/redeem-codes", handle_list_redeem_codes)
    app.router.add_delete("/api/admin/redeem-codes/{code}", handle_delete_redeem_code)
    app.router.add_post("/api/admin/invite-codes", handle_create_invite_codes)
    app.router.add_get("/api/admin/invite-codes", handle_list_invite_codes)
    app.router.add_delete("/api/admin/invite-codes/{code}", handle_delete_invite_code)
    app.router.add_get("/api/admin/stats", handle_stats)
    app.router.add_get("/api/admin/config", handle_get_config)
    app.router.add_post("/api/admin/config", handle_set_config)
