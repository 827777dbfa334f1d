import asyncio
import json
from typing import Any, Dict

from .logger import get_logger

logger = get_logger(__name__)


# In-process pubsub feeding the /events SSE stream
class EventBus:
    def __init__(self) -> None:
        self._subscribers: set[asyncio.Queue[str]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[str]:
        q: asyncio.Queue[str] = asyncio.Queue()
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue[str]) -> None:
        self._subscribers.discard(q)

    async def publish(self, data: str) -> None:
        for q in list(self._subscribers):
            q.put_nowait(data)

    async def publish_event(self, event_type: str, **payload: Any) -> None:
        message: Dict[str, Any] = {"type": event_type, **payload}
        logger.debug("Publishing %s to %d subscribers", event_type, self.subscriber_count)
        await self.publish(json.dumps(message, default=str))


event_bus = EventBus()
