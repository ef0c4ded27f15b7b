from __future__ import annotations

import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from gateway.app import error_response, read_json
from ledger import backpressure
from ledger.errors import NotFoundError, ValidationError
from ledger.keys import normalize_handle
from ledger.registration import register_with_invite
from ledger.users_store import verify_login

log = logging.getLogger("gateway.public")


async def handle_register(request: web.Request) -> web.Response:
    body = await read_json(request)
    handle = await register_with_invite(
        code=body.get("inviteCode"),
        handle=body.get("handle"),
        password=body.get("password"),
        name=body.get("name"),
    )
    return web.json_response({"success": True, "handle": handle}, status=201)


async def handle_login(request: web.Request) -> web.Response:
    body = await read_json(request)
    password = body.get("password")
    handle = normalize_handle(body.get("handle")) if isinstance(body.get("handle"), str) else None
    if not handle or not isinstance(password, str) or not password:
        raise ValidationError("Handle and password are required")
    try:
        user = await verify_login(handle, password)
    except NotFoundError as e:
        # Missing and banned look the same to the caller.
        return error_response(403, e.message)
    return web.json_response({
        "success": True,
        "handle": user.get("handle") or handle,
        "name": user.get("name") or handle,
    })


async def handle_health(request: web.Request) -> web.Response:
    r = await backpressure.get_redis_or_none()
    redis_ok = False
    if r is not None:
        try:
            redis_ok = bool(await r.ping())
        except Exception:
            log.warning("Health check: redis ping failed", exc_info=True)
    return web.json_response(
        {"ok": redis_ok, "redis": redis_ok},
        status=200 if redis_ok else 503,
    )


async def handle_metrics(request: web.Request) -> web.Response:
    resp = web.Response(body=generate_latest())
    resp.headers["Content-Type"] = CONTENT_TYPE_LATEST
    return resp


def setup_public_routes(app: web.Application) -> None:
    app.router.add_post("/api/users/register", handle_register)
    app.router.add_post("/api/users/login", handle_login)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/metrics", handle_metrics)
