import uuid
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP, String, Integer, Text, JSON, select, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.base import Base, CreatedMixin
from app.core.config import settings
from app.core.errors import TransientNetworkError
from app.modules.realtime.hub import topic_for
from app.modules.realtime.schemas import ChangeEvent
from app.platform.ports.event_bus import EventBusPort

log = logging.getLogger("event.outbox")

class EventOutbox(Base, CreatedMixin):
    __tablename__ = "event_outbox"

    table_name: Mapped[str] = mapped_column(String(64))
    event_type: Mapped[str] = mapped_column(String(16))  # INSERT | UPDATE | DELETE
    row_id: Mapped[str] = mapped_column(String(64))
    record: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_event(self) -> ChangeEvent:
        return ChangeEvent(table=self.table_name, type=self.event_type, record=self.record, commit_timestamp=self.occurred_at)

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, *, table: str, event_type: str, row_id: str | uuid.UUID, record: dict | None, occurred_at: datetime | None = None) -> EventOutbox:
        now = datetime.now(timezone.utc)
        obj = EventOutbox(
            table_name=table,
            event_type=event_type,
            row_id=str(row_id),
            record=record,
            occurred_at=occurred_at or now,
            status="pending",
            attempts=0,
            next_attempt_at=now,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 50) -> list[EventOutbox]:
        # SELECT ... FOR UPDATE SKIP LOCKED
        q = (
            select(EventOutbox)
            .where(
                and_(
                    EventOutbox.status == "pending",
                    EventOutbox.next_attempt_at <= datetime.now(timezone.utc),
                )
            )
            .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        # mark as processing
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str):
        obj.status = "pending"  # retry
        obj.attempts = (obj.attempts or 0) + 1
        backoff = min(60, 2 ** min(obj.attempts, 6))  # 2,4,8,16,32,60s
        obj.next_attempt_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
        obj.last_error = error[:2000]  # truncate
        await self.session.flush()

async def publish_batch(repo: OutboxRepository, bus: EventBusPort, limit: int = 50) -> int:
    """Publish one batch of pending changes; returns how many rows were claimed."""
    batch = await repo.claim_batch(limit=limit)
    for ev in batch:
        try:
            await bus.publish(topic=topic_for(ev.table_name), key=ev.row_id, value=ev.to_event().model_dump(mode="json"))
            await repo.mark_sent(ev)
        except Exception as ex:
            # row goes back to pending with backoff whatever the bus raised
            log.warning(f"Publish failed for outbox row {ev.id}: {ex!r}", exc_info=not isinstance(ex, TransientNetworkError))
            await repo.mark_failed(ev, error=str(ex) or type(ex).__name__)
    return len(batch)

# ---- Background relay ----

async def run_outbox_relay(bus: EventBusPort, session_factory: async_sessionmaker, poll_interval_seconds: float | None = None):
    poll = poll_interval_seconds if poll_interval_seconds is not None else settings.OUTBOX_POLL_INTERVAL_SECONDS
    log.info("Outbox relay started with bus=%s", bus.__class__.__name__)
    try:
        while True:
            # claim and publish in small batches
            async with session_factory() as session:
                repo = OutboxRepository(session)
                try:
                    claimed = await publish_batch(repo, bus)
                    await session.commit()
                except Exception:
                    log.exception("Outbox relay iteration failed")
                    claimed = 0
                    try:
                        await session.rollback()
                    except Exception:
                        log.exception("Outbox relay rollback failed")
            if not claimed:
                await asyncio.sleep(poll)
            await asyncio.sleep(0)  # yield
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
