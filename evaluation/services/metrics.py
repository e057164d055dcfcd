import logging
import time
from typing import Optional

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

DEGRADED_KEY = "metrics:degraded"
START_KEY = "metrics:start"
LAST_KEY = "metrics:degraded_last"


def _client():
    """
    Reuse a single Redis client. Default to CELERY_BROKER_URL if it is Redis, otherwise fallback to localhost.
    """
    url = getattr(settings, "METRICS_REDIS_URL", None) or getattr(settings, "CELERY_BROKER_URL", "redis://localhost:6379/0")
    return redis.Redis.from_url(url)


def _safe_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def reset_metrics() -> bool:
    try:
        cli = _client()
        pipe = cli.pipeline()
        pipe.delete(DEGRADED_KEY, LAST_KEY)
        pipe.set(START_KEY, time.time())
        pipe.execute()
    except redis.RedisError:
        logger.warning("Could not reset metrics", exc_info=True)
        return False
    return True


def record_degraded(path: str):
    """
    Count one fallback on a degraded path (ledger repair, promotion ledger write).

    Metrics are best effort: a Redis outage is logged and never propagates.
    """
    try:
        cli = _client()
        pipe = cli.pipeline()
        pipe.setnx(START_KEY, time.time())
        pipe.hincrby(DEGRADED_KEY, path, 1)
        pipe.hset(LAST_KEY, path, time.time())
        pipe.execute()
    except redis.RedisError:
        logger.warning("Could not record degraded path", extra={"path": path}, exc_info=True)


def get_metrics() -> Optional[dict]:
    """
    Returns degraded-path counters from Redis. If Redis is unreachable, returns None.
    """
    try:
        cli = _client()
        counters = cli.hgetall(DEGRADED_KEY)
        last = cli.hgetall(LAST_KEY)
        start_val = cli.get(START_KEY)
    except redis.RedisError:
        logger.warning("Metrics backend unreachable", exc_info=True)
        return None
    started_at = float(start_val) if start_val else None
    degraded = {k.decode(): _safe_int(v) for k, v in counters.items()}
    return {
        "degraded": degraded,
        "degraded_total": sum(degraded.values()),
        "last_degraded_at": {k.decode(): float(v) for k, v in last.items()},
        "started_at": started_at,
        "elapsed_seconds": round(time.time() - started_at, 2) if started_at else None,
    }
