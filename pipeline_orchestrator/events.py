import asyncio
from collections.abc import Callable
import inspect
import logging
import threading
from typing import Any


logger = logging.getLogger(__name__)

WILDCARD = "*"

Subscriber = Callable[[str, dict[str, Any]], Any]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event: str, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(event, []).append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                subscribers = self._subscribers.get(event, [])
                if subscriber in subscribers:
                    subscribers.remove(subscriber)

        return unsubscribe

    def subscribers_for(self, event: str) -> list[Subscriber]:
        with self._lock:
            return [*self._subscribers.get(event, []), *self._subscribers.get(WILDCARD, [])]

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        subscribers = self.subscribers_for(event)
        if not subscribers:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("event dropped outside of an event loop", extra={"event": event})
            return

        for subscriber in subscribers:
            task = loop.create_task(self._deliver(subscriber, event, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _deliver(self, subscriber: Subscriber, event: str, payload: dict[str, Any]) -> None:
        try:
            result = subscriber(event, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("event subscriber failed", extra={"event": event})
