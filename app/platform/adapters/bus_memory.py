import asyncio
import logging
from app.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.memory")

class _Listener:
    # attached on construction, so nothing published after listen() returns is missed
    def __init__(self, bus: "InMemoryEventBus", topic: str):
        self._bus = bus
        self._topic = topic
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        bus._listeners.setdefault(topic, set()).add(self._queue)

    async def start(self):
        pass

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def aclose(self):
        if self._closed:
            return
        self._closed = True
        queues = self._bus._listeners.get(self._topic)
        if queues is not None:
            queues.discard(self._queue)
            if not queues:
                del self._bus._listeners[self._topic]

class InMemoryEventBus(EventBusPort):
    """Process-local fan-out: each listener gets its own unbounded queue."""

    def __init__(self):
        self._listeners: dict[str, set[asyncio.Queue]] = {}

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        queues = self._listeners.get(topic, ())
        log.debug(f"[MEMORY BUS] topic={topic} key={key} listeners={len(queues)}")
        for q in list(queues):
            q.put_nowait(value)

    def listen(self, topic: str) -> _Listener:
        return _Listener(self, topic)
