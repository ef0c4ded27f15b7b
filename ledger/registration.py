"""Account creation: invite-code registration and external (OAuth) sign-up.

Invite registration ignores the global registrationEnabled switch: the invite
itself is the access control, admins close registration by not issuing codes.
External identities need either the switch on or a valid invite.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from ledger.account_store import new_ledger, save_ledger
from ledger.backpressure import key_lock
from ledger.codes_store import KIND_INVITE, is_invite_valid, mark_used, validate_invite
from ledger.errors import ConflictError, HandleTakenError, NotFoundError, RegistrationClosedError, ValidationError
from ledger.keys import account_key, normalize_handle, sanitize_handle, user_key, validate_new_handle
from ledger.purge import user_dir
from ledger.system_settings import is_registration_enabled
from ledger.users_store import check_new_password, create_user, get_user

log = logging.getLogger("ledger.registration")


async def _ensure_content_dir(handle: str) -> None:
    try:
        await asyncio.to_thread(user_dir(handle).mkdir, parents=True, exist_ok=True)
    except (OSError, ValueError):
        log.warning("Failed to create content directory for %s", handle, exc_info=True)


async def _fresh_ledger(handle: str) -> None:
    # A purge removes the identity but keeps a zeroed ledger; a new owner of the
    # handle must not inherit it.
    async with key_lock(account_key(handle)):
        await save_ledger(new_ledger(handle))


async def register_with_invite(*, code: Any, handle: Any, password: Any, name: Any = None) -> str:
    """Create a password account admitted by an invite code. Returns the final handle."""
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Please enter an invite code")
    if not isinstance(handle, str) or not handle.strip():
        raise ValidationError("Please enter a handle")
    check_new_password(password)

    final_handle = normalize_handle(handle) or sanitize_handle(None)
    validate_new_handle(final_handle)

    # Fail fast with the precise reason (missing / used / expired).
    await validate_invite(code)

    async with key_lock(user_key(final_handle)):
        if await get_user(final_handle) is not None:
            raise HandleTakenError("This handle is already taken")
        # Consume the invite before writing the identity so one invite can
        # never admit two accounts.
        await mark_used(KIND_INVITE, code, final_handle)
        display = name.strip() if isinstance(name, str) and name.strip() else final_handle
        await create_user(final_handle, name=display, password=password)

    await _ensure_content_dir(final_handle)
    await _fresh_ledger(final_handle)
    log.info("Registered %s via invite", final_handle)
    return final_handle


async def ensure_external_user(handle: str, name: str | None = None, invite_code: str | None = None) -> tuple[str, bool]:
    """Resolve a verified external identity to a local account.

    Returns (handle, created).
    """
    final_handle = sanitize_handle(handle)

    async with key_lock(user_key(final_handle)):
        if await get_user(final_handle) is not None:
            await _ensure_content_dir(final_handle)
            return final_handle, False

        registration_open = await is_registration_enabled()
        has_invite = await is_invite_valid(invite_code) if invite_code else False

        if not registration_open and not has_invite:
            raise RegistrationClosedError("Registration is closed; an invite code is required")

        if has_invite:
            try:
                await mark_used(KIND_INVITE, str(invite_code), final_handle)
            except (ConflictError, NotFoundError):
                if not registration_open:
                    raise
                log.info("Invite %s no longer usable for %s; open registration admits anyway", invite_code, final_handle)

        await create_user(final_handle, name=name)

    await _ensure_content_dir(final_handle)
    await _fresh_ledger(final_handle)
    log.info("Created external account %s (invite=%s)", final_handle, bool(has_invite))
    return final_handle, True
