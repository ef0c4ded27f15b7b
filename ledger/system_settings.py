from __future__ import annotations

from typing import Any

from ledger.keys import SYSTEM_CONFIG_KEY
from ledger.redis_kv import kv_get_json, kv_set_json

# Redis keyspace:
# - global switches stored as one JSON object:
#   key: system:config  (fields: registrationEnabled -> bool)

DEFAULT_SYSTEM_CONFIG: dict[str, Any] = {"registrationEnabled": True}


async def get_system_config() -> dict[str, Any]:
    # First read persists the defaults so admins see an explicit record.
    cfg = await kv_get_json(SYSTEM_CONFIG_KEY)
    if not isinstance(cfg, dict):
        cfg = dict(DEFAULT_SYSTEM_CONFIG)
        await kv_set_json(SYSTEM_CONFIG_KEY, cfg)
    return cfg


async def set_registration_enabled(enabled: bool) -> dict[str, Any]:
    cfg = await get_system_config()
    cfg["registrationEnabled"] = bool(enabled)
    await kv_set_json(SYSTEM_CONFIG_KEY, cfg)
    return cfg


async def is_registration_enabled() -> bool:
    cfg = await get_system_config()
    return cfg.get("registrationEnabled") is not False
