import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("growthcrm.events")


@dataclass(frozen=True)
class InternalEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def tenant_id(self) -> str | None:
        value = self.payload.get("tenant_id")
        return str(value) if value is not None else None


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out inside one process. A failing handler stops the publish."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.setdefault(event_name, [])
        # lifespan runs once per TestClient, registering twice must not double-fire
        if handler not in handlers:
            handlers.append(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        event = InternalEvent(name=event_name, payload=payload)
        handlers = tuple(self._subscribers.get(event_name, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event.handler_failed", extra={"event_name": event_name, "tenant_id": event.tenant_id})
                raise
        return len(handlers)


event_bus = InProcessEventBus()
