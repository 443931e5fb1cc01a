"""
Fire-and-forget order notifications: LPUSH a JSON message onto a Redis list that
the mailer worker drains. Publishing never blocks or fails the request that caused it.
"""
import json
import logging
from datetime import datetime, timezone

import redis.asyncio as redis
from redis.exceptions import RedisError

from order_workflow.config import settings
from order_workflow.domain import Order
from order_workflow.order_state import status_description

logger = logging.getLogger(__name__)

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def _make_body(event: str, order: Order) -> dict:
    return {
        "event": event,
        "order_number": order.order_number,
        "user_id": order.user,
        "status": order.status.value,
        "status_description": status_description(order.status),
        "published_at": datetime.now(timezone.utc).isoformat(),
    }


async def publish_order_event(event: str, order: Order) -> None:
    body = _make_body(event, order)
    try:
        r = await get_redis()
        await r.lpush(settings.notifications_queue_key, json.dumps(body))
    except RedisError as e:
        logger.warning("Could not publish %s for order %s: %s", event, order.order_number, e)
        return
    logger.info("Published %s for order %s", event, order.order_number)
