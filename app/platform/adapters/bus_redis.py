import json
import logging
from collections import deque
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from app.platform.ports.event_bus import EventBusPort
from app.core.config import settings
from app.core.errors import TransientNetworkError

log = logging.getLogger("bus.redis")

class RedisEventBus(EventBusPort):
    """One Redis stream per topic; listeners tail it from the moment they attach."""

    def __init__(self, redis=None):
        if redis is None:
            if not settings.REDIS_URL:
                raise RuntimeError("REDIS_URL not configured")
            redis = redis_from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self.redis = redis

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        payload = {
            "key": key,
            "value": json.dumps(value),
            "headers": json.dumps(headers or {}),
        }
        try:
            await self.redis.xadd(topic, payload, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise TransientNetworkError(f"publish to {topic} failed: {e}") from e
        log.debug(f"[REDIS BUS] XADD stream={topic} key={key}")

    def listen(self, topic: str) -> "_StreamListener":
        return _StreamListener(self.redis, topic)

class _StreamListener:
    """Tails one stream from the id it was anchored at.

    ``start()`` pins the anchor to the stream's current tail; entries added
    after it returns are delivered. Iterating without ``start()`` anchors on
    the first read instead.
    """

    def __init__(self, redis, topic: str):
        self.redis = redis
        self.topic = topic
        self.last_id: str | None = None
        self._pending: deque = deque()
        self._closed = False

    async def start(self):
        if self.last_id is not None:
            return
        try:
            tail = await self.redis.xrevrange(self.topic, count=1)
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise TransientNetworkError(f"read from {self.topic} failed: {e}") from e
        self.last_id = tail[0][0] if tail else "0-0"
        log.debug(f"[REDIS BUS] anchored stream={self.topic} at {self.last_id}")

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        await self.start()
        while not self._closed:
            while self._pending:
                entry_id, fields = self._pending.popleft()
                try:
                    return json.loads(fields["value"])
                except (KeyError, TypeError, json.JSONDecodeError):
                    log.warning(f"[REDIS BUS] dropping malformed entry {entry_id} on {self.topic}")
            try:
                res = await self.redis.xread({self.topic: self.last_id}, count=100, block=settings.REDIS_BLOCK_MS)
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                raise TransientNetworkError(f"read from {self.topic} failed: {e}") from e
            for _stream, entries in res or []:
                for entry_id, fields in entries:
                    self.last_id = entry_id
                    self._pending.append((entry_id, fields))
        raise StopAsyncIteration

    async def aclose(self):
        self._closed = True
        self._pending.clear()
