# gateway/app.py
"""aiohttp application: middlewares, identity resolution, route registration.

Session handling is owned by the host application. By the time a request
reaches us the session layer has resolved the caller, and the handle arrives
in config.REMOTE_USER_HEADER (absent = not logged in). Pass resolve_handle
to build_app() to plug in a different source.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from aiohttp import web

import config
from ledger.admin import AdminCredentials
from ledger.errors import (
    AuthError,
    CodeGenerationError,
    ConflictError,
    HandleTakenError,
    LedgerError,
    NotFoundError,
    RegistrationClosedError,
    StorageError,
    ValidationError,
)
from ledger.keys import normalize_handle
from ledger.prom import http_latency

log = logging.getLogger("gateway.http")

HandleResolver = Callable[[web.Request], Optional[str]]

ADMIN_CREDENTIALS = web.AppKey("admin_credentials", AdminCredentials)
HANDLE_RESOLVER = web.AppKey("handle_resolver", object)
ADMIN_SESSION_TTL = web.AppKey("admin_session_ttl", int)


def header_handle_resolver(request: web.Request) -> Optional[str]:
    return normalize_handle(request.headers.get(config.REMOTE_USER_HEADER))


def current_handle(request: web.Request) -> Optional[str]:
    resolver: HandleResolver = request.app[HANDLE_RESOLVER]  # type: ignore[assignment]
    return resolver(request)


def require_handle(request: web.Request) -> str:
    handle = current_handle(request)
    if not handle:
        raise web.HTTPForbidden(
            text='{"error":"Not logged in"}',
            content_type="application/json",
        )
    return handle


async def read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def error_response(status: int, message: str, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, RegistrationClosedError):
        return 403
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, HandleTakenError):
        return 409
    if isinstance(exc, ConflictError):
        return 400
    return 500


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (StorageError, CodeGenerationError) as e:
        log.error("%s %s failed: %s", request.method, request.path, e)
        return error_response(500, "Server error, please try again later")
    except LedgerError as e:
        return error_response(_status_for(e), e.message, **e.context)
    except Exception:
        log.exception("%s %s crashed", request.method, request.path)
        return error_response(500, "Server error, please try again later")


@web.middleware
async def metrics_middleware(request: web.Request, handler):
    t0 = time.perf_counter()
    try:
        return await handler(request)
    finally:
        route = request.match_info.route
        name = getattr(route.resource, "canonical", None) if route.resource is not None else None
        http_latency.labels(route=name or "unmatched").observe(time.perf_counter() - t0)


def build_app(
    *,
    admin_credentials: AdminCredentials,
    resolve_handle: HandleResolver | None = None,
    admin_session_ttl_s: int | None = None,
) -> web.Application:
    from gateway.account_routes import setup_account_routes
    from gateway.admin_routes import setup_admin_routes
    from gateway.public_routes import setup_public_routes

    app = web.Application(middlewares=[metrics_middleware, error_middleware])
    app[ADMIN_CREDENTIALS] = admin_credentials
    app[HANDLE_RESOLVER] = resolve_handle or header_handle_resolver
    app[ADMIN_SESSION_TTL] = int(admin_session_ttl_s or config.ADMIN_SESSION_TTL_S)

    setup_public_routes(app)
    setup_account_routes(app)
    setup_admin_routes(app)
    return app
