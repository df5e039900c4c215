import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable
from pydantic import ValidationError as PydanticValidationError
from app.core.config import settings
from app.core.errors import TransientNetworkError
from app.modules.realtime.schemas import ChangeEvent
from app.platform.ports.event_bus import EventBusPort

log = logging.getLogger("realtime.hub")

def topic_for(table: str) -> str:
    return f"{settings.CHANGE_TOPIC_PREFIX}.{table}"

def backoff_seconds(attempt: int) -> float:
    # base, 2x, 4x ... capped
    return min(settings.LIVE_RETRY_MAX_SECONDS, settings.LIVE_RETRY_BASE_SECONDS * 2 ** min(max(attempt - 1, 0), 6))

@dataclass(frozen=True)
class RowFilter:
    """``column = value`` on the changed row.

    Events whose record is missing, or does not carry the column, pass: the
    feed does not guarantee a payload, so the subscriber has to re-check.
    """
    column: str
    value: object

    def matches(self, record: dict | None) -> bool:
        if not record or self.column not in record:
            return True
        return str(record[self.column]) == str(self.value)

@dataclass(eq=False)
class Subscription:
    table: str
    handler: Callable[[ChangeEvent], None]
    events: frozenset[str] | None = None
    row_filter: RowFilter | None = None
    active: bool = field(default=True)

    def wants(self, event: ChangeEvent) -> bool:
        if event.type == "RESYNC":
            return True
        if self.events is not None and event.type not in self.events:
            return False
        if self.row_filter is not None and not self.row_filter.matches(event.record):
            return False
        return True

class _TableChannel:
    """One bus listener per table, shared by every subscriber of that table."""

    def __init__(self, bus: EventBusPort, table: str):
        self.bus = bus
        self.table = table
        self.topic = topic_for(table)
        self.subscribers: list[Subscription] = []
        self.task: asyncio.Task | None = None
        self.ready = asyncio.Event()
        self.reconnects = 0

    def start(self, resync: bool = False):
        self.ready = asyncio.Event()
        listener = self.bus.listen(self.topic)
        self.task = asyncio.create_task(self._run(listener, resync), name=f"change-listener:{self.table}")
        self.task.add_done_callback(self._report_exit)

    @property
    def alive(self) -> bool:
        return self.task is not None and not self.task.done()

    async def stop(self):
        task, self.task = self.task, None
        self.ready.set()
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, listener, resync: bool = False):
        attempt = 0
        try:
            while True:
                try:
                    await listener.start()
                    self.ready.set()
                    if resync:
                        resync = False
                        # anything published while disconnected is gone; make every view re-fetch
                        self.dispatch(ChangeEvent(table=self.table, type="RESYNC"))
                    async for value in listener:
                        attempt = 0
                        event = self._parse(value)
                        if event is not None:
                            self.dispatch(event)
                    raise TransientNetworkError(f"listener for {self.topic} ended")
                except Exception as e:
                    attempt += 1
                    delay = backoff_seconds(attempt)
                    transient = isinstance(e, (TransientNetworkError, ConnectionError, OSError))
                    log.warning(f"change feed for {self.table} lost ({e!r}); reconnecting in {delay:.1f}s", exc_info=not transient)
                    # waiters must not hang on a feed that cannot attach
                    self.ready.set()
                    await _close(listener)
                    await asyncio.sleep(delay)
                    listener = self.bus.listen(self.topic)
                    self.reconnects += 1
                    resync = True
        finally:
            await _close(listener)

    def _parse(self, value: dict) -> ChangeEvent | None:
        try:
            return ChangeEvent.model_validate(value)
        except PydanticValidationError:
            log.warning(f"dropping malformed change event on {self.topic}: {value!r}")
            return None

    def dispatch(self, event: ChangeEvent):
        for sub in list(self.subscribers):
            if not sub.active or not sub.wants(event):
                continue
            try:
                sub.handler(event)
            except Exception:
                log.exception(f"change handler failed for {self.table}")

    def _report_exit(self, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            log.error(f"change listener for {self.table} died", exc_info=task.exception())

async def _close(listener):
    aclose = getattr(listener, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        log.warning("closing change listener failed", exc_info=True)

class ChangeHub:
    """Reference-counted multiplexer of table subscriptions over one bus."""

    def __init__(self, bus: EventBusPort):
        self.bus = bus
        self._channels: dict[str, _TableChannel] = {}

    def subscribe(self, table: str, handler: Callable[[ChangeEvent], None], *, events: Iterable[str] | None = None, row_filter: RowFilter | None = None) -> Subscription:
        sub = Subscription(table=table, handler=handler, events=frozenset(events) if events else None, row_filter=row_filter)
        channel = self._channels.get(table)
        if channel is None:
            channel = _TableChannel(self.bus, table)
            self._channels[table] = channel
            channel.start()
            log.debug(f"opened change channel for {table}")
        elif not channel.alive:
            log.warning(f"change channel for {table} had stopped; restarting")
            channel.start(resync=True)
        channel.subscribers.append(sub)
        return sub

    async def unsubscribe(self, sub: Subscription):
        if not sub.active:
            return
        sub.active = False
        channel = self._channels.get(sub.table)
        if channel is None or sub not in channel.subscribers:
            return
        channel.subscribers.remove(sub)
        if not channel.subscribers:
            del self._channels[sub.table]
            await channel.stop()
            log.debug(f"closed change channel for {sub.table}")

    async def ready(self, table: str):
        """Wait until the table's listener is attached to the bus."""
        channel = self._channels.get(table)
        if channel is not None:
            await channel.ready.wait()

    def refcount(self, table: str) -> int:
        channel = self._channels.get(table)
        return len(channel.subscribers) if channel else 0

    def channel(self, table: str) -> _TableChannel | None:
        return self._channels.get(table)

    async def close(self):
        channels, self._channels = list(self._channels.values()), {}
        for channel in channels:
            for sub in channel.subscribers:
                sub.active = False
            await channel.stop()
