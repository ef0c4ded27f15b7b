"""/api/account/*: the logged-in user's ledger."""
from __future__ import annotations

from aiohttp import web

from gateway.app import current_handle, read_json, require_handle
from ledger import clock
from ledger.account_store import (
    as_number,
    check_in,
    effective_access,
    get_status,
    redeem,
    toggle_access,
)
from ledger.leaderboard import get_leaderboard
from ledger.users_store import change_password, get_user


async def handle_status(request: web.Request) -> web.Response:
    handle = require_handle(request)
    status = await get_status(handle)
    user = await get_user(handle)
    offset = clock.parse_tz_offset(request.headers.get("X-TZ-Offset"))
    return web.json_response({
        "handle": handle,
        "name": (user or {}).get("name") or handle,
        "points": as_number(status.points),
        "accessOn": status.access_on,
        "offDays": status.off_days,
        "canCheckInToday": status.can_check_in_today,
        "nextCheckInAt": status.next_check_in_at,
        "purged": status.purged,
        "clientDay": clock.day_string_with_offset(clock.now_ms(), offset),
    })


async def handle_checkin(request: web.Request) -> web.Response:
    handle = require_handle(request)
    res = await check_in(handle)
    return web.json_response({
        "points": as_number(res.points),
        "lastCheckInAt": res.last_check_in_at,
        "lastCheckInDate": res.last_check_in_date,
        "nextCheckInAt": res.next_check_in_at,
    })


async def handle_toggle(request: web.Request) -> web.Response:
    handle = require_handle(request)
    body = await read_json(request)
    res = await toggle_access(handle, body.get("accessOn"))
    return web.json_response({"accessOn": res.access_on, "points": as_number(res.points)})


async def handle_redeem(request: web.Request) -> web.Response:
    handle = require_handle(request)
    body = await read_json(request)
    res = await redeem(handle, body.get("code"))
    return web.json_response({
        "success": True,
        "points": as_number(res.points),
        "addedPoints": res.added_points,
        "message": f"Redeemed {res.added_points} points",
    })


async def handle_leaderboard(request: web.Request) -> web.Response:
    handle = require_handle(request)
    lb = await get_leaderboard(handle)
    return web.json_response({
        "total": lb.total,
        "myRank": lb.my_rank,
        "myPoints": as_number(lb.my_points),
        "leaderboard": [
            {"name": e.name, "handle": e.handle, "points": as_number(e.points)}
            for e in lb.entries
        ],
    })


async def handle_change_password(request: web.Request) -> web.Response:
    handle = current_handle(request)
    if not handle:
        raise web.HTTPUnauthorized(text='{"error":"Not logged in"}', content_type="application/json")
    body = await read_json(request)
    await change_password(handle, body.get("currentPassword"), body.get("newPassword"))
    return web.json_response({"success": True, "message": "Password changed"})


async def handle_access(request: web.Request) -> web.Response:
    decision = await effective_access(current_handle(request))
    payload = {"allowed": decision.allowed}
    if decision.reason:
        payload["reason"] = decision.reason
    return web.json_response(payload)


def setup_account_routes(app: web.Application) -> None:
    app.router.add_get("/api/account/status", handle_status)
    app.router.add_post("/api/account/checkin", handle_checkin)
    app.router.add_post("/api/account/toggle", handle_toggle)
    app.router.add_post("/api/account/redeem", handle_redeem)
    app.router.add_get("/api/account/leaderboard", handle_leaderboard)
    app.router.add_post("/api/account/change-password", handle_change_password)
    app.router.add_get("/api/account/access", handle_access)
