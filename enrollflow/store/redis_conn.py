from typing import Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from enrollflow.observability.logging import log
from enrollflow.settings import settings

# One client per URL; redis-py pools connections inside the client.
_clients: Dict[str, Redis] = {}


def get_redis(url: Optional[str] = None) -> Redis:
    url = url or settings.REDIS_URL
    client = _clients.get(url)
    if client is None:
        client = Redis.from_url(url, decode_responses=True)
        _clients[url] = client
    return client


def ping_redis(url: Optional[str] = None) -> bool:
    try:
        return bool(get_redis(url).ping())
    except RedisError as e:
        log(event="redis_unreachable", error=str(e)[:200])
        return False
