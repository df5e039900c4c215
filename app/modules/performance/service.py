"""Daily conversation metrics.

First-response latency of a conversation is the time from its creation to
the first message not sent by its patient (automated messages count).
Conversations nobody answered yet are left out of the average and counted
as unanswered.
"""
import uuid
from collections import defaultdict
from datetime import datetime
from statistics import fmean
from typing import Callable
from zoneinfo import ZoneInfo
from app.core.base import utcnow
from app.core.config import settings
from app.core.enums import ConversationStatus, PENDING_STATUSES, Role
from app.core.errors import CoreError, PermissionDeniedError, returns_errors
from app.core.security import ensure_actor
from app.modules.conversations.schemas import ConversationOut, MessageOut
from app.modules.performance.schemas import PerformanceSnapshot, TeamMemberStats
from app.modules.profiles.schemas import Actor
from app.modules.realtime.hub import ChangeHub
from app.modules.realtime.live import LiveView
from app.platform.ports.store import ClinicStorePort

# which conversations count toward an actor's numbers
SCOPES: dict[Role, Callable[[Actor], dict]] = {
    Role.patient: lambda a: {"patient_id": a.id},
    Role.attendant: lambda a: {"attendant_id": a.id},
    Role.manager: lambda a: {},
}

def local_midnight(now: datetime, tz_name: str | None = None) -> datetime:
    tz = ZoneInfo(tz_name or settings.CLINIC_TIMEZONE)
    return now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)

def format_duration(seconds: float | None) -> str | None:
    if seconds is None:
        return None
    total = int(round(seconds))
    return f"{total // 60}m {total % 60}s"

def first_response_latencies(convs: list[ConversationOut], messages: list[MessageOut]) -> dict[uuid.UUID, float]:
    # messages arrive ordered by (created_at, id)
    by_id = {c.id: c for c in convs}
    out: dict[uuid.UUID, float] = {}
    for m in messages:
        conv = by_id.get(m.conversation_id)
        if conv is None or conv.id in out or m.sender_id == conv.patient_id:
            continue
        out[conv.id] = max(0.0, (m.created_at - conv.created_at).total_seconds())
    return out

def _average(values) -> float | None:
    values = list(values)
    return fmean(values) if values else None

class PerformanceAggregator:
    def __init__(self, store: ClinicStorePort, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def _window(self, now: datetime | None, **scope):
        now = now or self.clock()
        since = local_midnight(now)
        convs = await self.store.conversations_created_since(since, **scope)
        messages = await self.store.messages_for([c.id for c in convs]) if convs else []
        return now, since, convs, first_response_latencies(convs, messages)

    @returns_errors
    async def compute_daily(self, actor: Actor, now: datetime | None = None) -> tuple[PerformanceSnapshot | None, CoreError | None]:
        actor = ensure_actor(actor)
        now, since, convs, latencies = await self._window(now, **SCOPES[actor.role](actor))

        by_status = {s.value: 0 for s in ConversationStatus}
        for c in convs:
            by_status[c.status.value] += 1
        avg = _average(latencies.values())
        return PerformanceSnapshot(
            actor_id=None if actor.role == Role.manager else actor.id,
            window_start=since,
            generated_at=now,
            total=len(convs),
            by_status=by_status,
            resolved=by_status[ConversationStatus.resolved.value],
            pending=sum(1 for c in convs if c.status in PENDING_STATUSES),
            responded=len(latencies),
            unanswered=len(convs) - len(latencies),
            first_response_seconds=latencies,
            avg_first_response_seconds=avg,
            avg_response_time=format_duration(avg),
        ), None

    @returns_errors
    async def compute_team(self, actor: Actor, now: datetime | None = None) -> tuple[list[TeamMemberStats] | None, CoreError | None]:
        actor = ensure_actor(actor)
        if actor.role != Role.manager:
            return None, PermissionDeniedError("team statistics are for managers")
        staff = await self.store.list_staff()
        _, _, convs, latencies = await self._window(now)

        handled: dict[uuid.UUID, list[ConversationOut]] = defaultdict(list)
        for c in convs:
            if c.attendant_id:
                handled[c.attendant_id].append(c)

        members = []
        for p in staff:
            mine = handled.get(p.id, [])
            avg = _average(latencies[c.id] for c in mine if c.id in latencies)
            members.append(TeamMemberStats(
                id=p.id,
                name=p.full_name,
                role=p.role,
                chats_today=len(mine),
                resolved_today=sum(1 for c in mine if c.status == ConversationStatus.resolved),
                avg_first_response_seconds=avg,
                avg_response_time=format_duration(avg),
            ))
        return members, None

class PerformanceView(LiveView[PerformanceSnapshot]):
    """Daily snapshot kept current as conversations and messages change."""

    def __init__(self, store: ClinicStorePort, hub: ChangeHub, actor: Actor | None, *, clock: Callable[[], datetime] = utcnow, **kw):
        super().__init__(hub, actor, **kw)
        self.aggregator = PerformanceAggregator(store, clock)

    def _subscriptions(self):
        return [
            ("conversations", None, None),
            ("messages", {"INSERT"}, None),
        ]

    async def _fetch(self) -> PerformanceSnapshot:
        snapshot, err = await self.aggregator.compute_daily(self.actor)
        if err:
            raise err
        return snapshot
