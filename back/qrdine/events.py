import json
import logging

import redis

from .settings import settings

logger = logging.getLogger(__name__)

# Redis client for pub/sub
redis_client: redis.Redis | None = None


def get_redis() -> redis.Redis | None:
    global redis_client
    if redis_client is None:
        try:
            client = redis.from_url(settings.redis_url)
            client.ping()
        except redis.RedisError as e:
            logger.debug(f"Redis unavailable, real-time updates disabled: {e}")
            return None
        redis_client = client
    return redis_client


def publish_order_update(tenant_id: int, order_data: dict, table_id: int | None = None) -> None:
    """Publish order update for live dashboards.

    Publishes to both:
    - orders:tenant:{tenant_id} - for restaurant staff (all tenant orders)
    - orders:table:{table_id} - for customers at the table, when the order has one
    """
    r = get_redis()
    if r is None:
        return
    message = json.dumps(order_data, default=str)
    try:
        r.publish(f"orders:tenant:{tenant_id}", message)
        if table_id is not None:
            r.publish(f"orders:table:{table_id}", message)
    except redis.RedisError as e:
        logger.warning(f"Failed to publish order update for tenant {tenant_id}: {e}")
