import logging
from consentgate.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Drops events after logging them; the default outside deployments with Redis."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        log.info("[NOOP BUS] %s %s key=%s", topic, value.get("type", "-"), key)
