import asyncio
import logging
from typing import Callable, Generic, TypeVar
from app.core.errors import CoreError, SessionError
from app.core.security import ensure_actor
from app.modules.profiles.schemas import Actor
from app.modules.realtime.hub import ChangeHub, RowFilter, Subscription, backoff_seconds
from app.modules.realtime.schemas import ChangeEvent

log = logging.getLogger("realtime.live")

T = TypeVar("T")

class LiveView(Generic[T]):
    """A snapshot kept in sync with the store by re-fetching on change events.

    Every fetch is tagged with a sequence number. A response is applied only
    if it answers the latest request issued and the view is still open, so a
    slow response can never overwrite a newer one, and nothing lands after
    ``close()``. A failed fetch keeps the last good snapshot and retries with
    backoff. Only a ``SessionError`` ends the subscription.
    """

    def __init__(self, hub: ChangeHub, actor: Actor | None, *,
                 on_change: Callable[[T], None] | None = None,
                 on_error: Callable[[CoreError], None] | None = None):
        self.hub = hub
        self.actor = actor
        self.on_change = on_change
        self.on_error = on_error
        self.snapshot: T | None = None
        self.error: CoreError | None = None
        self._subs: list[Subscription] = []
        self._issued = 0
        self._applied = 0
        self._attempts = 0
        self._opened = False
        self._closed = False
        self._retry: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ---- hooks ----

    def _subscriptions(self) -> list[tuple[str, set[str] | None, RowFilter | None]]:
        raise NotImplementedError

    async def _fetch(self) -> T:
        raise NotImplementedError

    async def _authorize(self) -> CoreError | None:
        return None

    # ---- lifecycle ----

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def sequence(self) -> tuple[int, int]:
        """(issued, applied) request sequence numbers."""
        return self._issued, self._applied

    async def open(self) -> tuple[T | None, CoreError | None]:
        ensure_actor(self.actor)
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is closed")
        if self._opened:
            return self.snapshot, self.error
        err = await self._authorize()
        if err:
            return None, err
        self._opened = True
        # subscribe before the first fetch so no change falls in between
        await self._subscribe()
        await self.refresh()
        return self.snapshot, self.error

    async def close(self):
        if self._closed:
            return
        self._closed = True
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        await self._unsubscribe()

    async def _subscribe(self):
        tables = []
        for table, events, row_filter in self._subscriptions():
            self._subs.append(self.hub.subscribe(table, self._on_event, events=events, row_filter=row_filter))
            tables.append(table)
        # the first fetch must not run before the feed is attached
        for table in tables:
            await self.hub.ready(table)

    async def _unsubscribe(self):
        subs, self._subs = self._subs, []
        for sub in subs:
            await self.hub.unsubscribe(sub)

    # ---- refresh ----

    def _on_event(self, event: ChangeEvent):
        if self._closed:
            return
        log.debug(f"{type(self).__name__}: {event.type} on {event.table}")
        self._spawn(self.refresh())

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_current(self, seq: int) -> bool:
        return not self._closed and seq == self._issued

    async def refresh(self) -> bool:
        """Re-fetch and apply; returns whether this call's response was applied."""
        if self._closed:
            return False
        self._issued += 1
        seq = self._issued
        try:
            data = await self._fetch()
        except SessionError as e:
            if not self._closed:
                log.error(f"{type(self).__name__}: session ended, closing view")
                self.error = e
                self._notify_error(e)
                await self.close()
            return False
        except CoreError as e:
            if not self._is_current(seq):
                return False
            self.error = e
            self._attempts += 1
            log.warning(f"{type(self).__name__}: refresh failed ({e.code}: {e.message}); keeping last snapshot")
            self._notify_error(e)
            self._schedule_retry()
            return False
        if not self._is_current(seq):
            log.debug(f"{type(self).__name__}: discarding stale response seq={seq} latest={self._issued}")
            return False
        self.snapshot = data
        self.error = None
        self._attempts = 0
        self._applied = seq
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        if self.on_change is not None:
            self.on_change(data)
        return True

    def _schedule_retry(self):
        if self._closed or (self._retry is not None and not self._retry.done()):
            return
        delay = backoff_seconds(self._attempts)
        log.info(f"{type(self).__name__}: retrying in {delay:.1f}s (attempt {self._attempts})")
        self._retry = asyncio.create_task(self._retry_after(delay))

    async def _retry_after(self, delay: float):
        await asyncio.sleep(delay)
        self._retry = None
        await self.refresh()

    def _notify_error(self, err: CoreError):
        if self.on_error is not None:
            self.on_error(err)

    async def settle(self):
        """Wait for refreshes already triggered by events to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
