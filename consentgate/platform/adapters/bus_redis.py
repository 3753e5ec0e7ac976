import json
import logging
from redis.asyncio import from_url as redis_from_url
from consentgate.platform.ports.event_bus import EventBusPort
from consentgate.core.config import settings

log = logging.getLogger("bus.redis")

DEFAULT_STREAM = "consentgate.events"

class RedisEventBus(EventBusPort):
    """Appends events to a capped Redis stream; consumers read it with XREADGROUP."""

    def __init__(self, url: str | None = None, stream: str | None = None):
        url = url or settings.REDIS_URL
        if not url:
            raise RuntimeError("REDIS_URL not configured")
        self.redis = redis_from_url(url, encoding="utf-8", decode_responses=True)
        self.stream = stream or settings.REDIS_STREAM or DEFAULT_STREAM

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        entry = {"topic": topic, "key": key, "body": json.dumps(value, default=str)}
        for name, header in (headers or {}).items():
            entry[f"h:{name}"] = str(header)
        entry_id = await self.redis.xadd(self.stream, entry, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        log.debug("[REDIS BUS] XADD %s id=%s topic=%s key=%s", self.stream, entry_id, topic, key)

    async def close(self) -> None:
        await self.redis.aclose()
