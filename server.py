# server.py
import asyncio
import logging
import signal
from logging.handlers import RotatingFileHandler

from aiohttp import web
from dotenv import load_dotenv
from pythonjsonlogger.json import JsonFormatter

# Environment first: config reads os.environ at import time.
load_dotenv()

import config  # noqa: E402
from gateway.app import build_app  # noqa: E402
from ledger.admin import AdminCredentials  # noqa: E402
from ledger.backpressure import close_redis, get_redis_or_none  # noqa: E402
from ledger.purge_sweep_loop import start_purge_sweep_loop  # noqa: E402

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)


def _make_json_formatter() -> logging.Formatter:
    return JsonFormatter(
        "{asctime}{levelname}{name}{message}",
        style="{",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )


def setup_logging() -> None:
    """Configure logging once (safe for reloads)."""
    for handler in root_logger.handlers:
        if getattr(handler, "_ledger_handler", False):
            return

    config.LOG_DIR.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console._ledger_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(console)

    json_fmt = _make_json_formatter()

    file = RotatingFileHandler(
        config.LOG_DIR / "server.log",
        maxBytes=5_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    file.setFormatter(json_fmt)
    file._ledger_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(file)

    errors = RotatingFileHandler(
        config.LOG_DIR / "errors.log",
        maxBytes=2_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    errors.setLevel(logging.ERROR)
    errors.setFormatter(json_fmt)
    errors._ledger_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(errors)


logger = logging.getLogger("server")


async def ensure_redis_best_effort() -> bool:
    """Ping Redis a few times so cold starts don't log a wall of errors.

    The server still starts when Redis is down; ledger routes answer 500 and
    /health reports 503 until it comes back.
    """
    r = await get_redis_or_none()
    if r is None:
        return False
    for _ in range(1, 6):
        try:
            await r.ping()
            return True
        except Exception:
            await asyncio.sleep(1.0)
    return False


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def main() -> None:
    setup_logging()
    config.validate_config()

    app = build_app(
        admin_credentials=AdminCredentials(config.ADMIN_USERNAME, config.ADMIN_PASSWORD),
    )

    if await ensure_redis_best_effort():
        logger.info("Redis reachable")
    else:
        logger.error("Redis unreachable at startup; ledger routes will fail until it is back")

    sweep = start_purge_sweep_loop()

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.HOST, config.PORT)
    await site.start()
    logger.info("%s listening on %s:%d (env=%s)", config.APP_NAME, config.HOST, config.PORT, config.ENVIRONMENT)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass  # no signal handlers on Windows event loops

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        if sweep is not None:
            sweep.cancel()
        await runner.cleanup()
        await close_redis()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
