import logging
from consentgate.core.config import settings
from consentgate.platform.ports.event_bus import EventBusPort
from consentgate.platform.adapters.bus_noop import NoopEventBus
from consentgate.platform.adapters.bus_redis import RedisEventBus

log = logging.getLogger(__name__)

class ProviderRegistry:
    """Lazily built adapters, one per process."""
    _event_bus: EventBusPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            provider = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            cls._event_bus = RedisEventBus() if provider == "redis" else NoopEventBus()
            log.info("Event bus provider: %s", cls._event_bus.__class__.__name__)
        return cls._event_bus

    @classmethod
    async def close(cls) -> None:
        bus, cls._event_bus = cls._event_bus, None
        close = getattr(bus, "close", None)
        if close:
            await close()

    @classmethod
    def reset(cls) -> None:
        cls._event_bus = None

registry = ProviderRegistry()
