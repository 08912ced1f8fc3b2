"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

import httpx
from arq.connections import RedisSettings

from fastdeal.core.config import get_settings
from fastdeal.core.logging import configure_logging, get_logger
from fastdeal.gateways import build_gateways
from fastdeal.services.reconciliation import ReconciliationController
from fastdeal.storage.base import get_stores

log = get_logger(__name__)


async def sweep_expired_payments(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: resolve or purge payments left open past their expiry."""
    controller: ReconciliationController = ctx["controller"]
    log.info("job_start", job="sweep_expired_payments")
    try:
        return await controller.sweep_expired()
    except Exception:
        log.exception("job_failed", job="sweep_expired_payments")
        raise


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    stores = await get_stores(settings)
    http = httpx.AsyncClient(timeout=settings.gateway_timeout_seconds)
    ctx["stores"] = stores
    ctx["http"] = http
    ctx["controller"] = ReconciliationController(stores, build_gateways(settings, http), settings=settings)


async def shutdown(ctx: dict) -> None:
    if "http" in ctx:
        await ctx["http"].aclose()
    if "stores" in ctx:
        await ctx["stores"].close()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )


def sweep_minutes() -> set[int]:
    """Minutes of the hour at which the sweep runs."""
    interval = max(1, min(get_settings().sweep_interval_minutes, 60))
    return set(range(0, 60, interval))
