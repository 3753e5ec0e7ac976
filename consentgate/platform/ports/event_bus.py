from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Where relayed outbox events go. ``key`` is the subject id; ordering is per key."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...
