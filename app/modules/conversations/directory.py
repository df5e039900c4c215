import uuid
import logging
from app.core.config import settings
from app.core.enums import ConversationStatus
from app.core.errors import ConflictError, CoreError, SessionError, returns_errors
from app.modules.conversations.schemas import ConversationOut, ConversationView
from app.modules.conversations.service import ConversationService
from app.modules.conversations.visibility import visibility_for
from app.modules.profiles.schemas import Actor
from app.modules.realtime.hub import ChangeHub
from app.modules.realtime.live import LiveView
from app.platform.ports.store import ClinicStorePort

log = logging.getLogger(__name__)

def preview_of(content: str | None, limit: int | None = None) -> str | None:
    if content is None:
        return None
    limit = limit or settings.PREVIEW_MAX_CHARS
    lines = content.strip().splitlines()
    line = lines[0].strip() if lines else ""
    return line if len(line) <= limit else line[: limit - 1].rstrip() + "…"

def order_for_display(views: list[ConversationView]) -> list[ConversationView]:
    # newest activity first; id keeps ties stable across refreshes
    views = sorted(views, key=lambda v: str(v.id))
    return sorted(views, key=lambda v: v.last_message_at, reverse=True)

async def decorate(store: ClinicStorePort, convs: list[ConversationOut]) -> list[ConversationView]:
    ids = [c.id for c in convs]
    latest = await store.latest_messages(ids)
    people = {c.patient_id for c in convs} | {c.attendant_id for c in convs if c.attendant_id}
    names = {pid: p.full_name for pid, p in (await store.get_profiles(people)).items()}
    return [
        ConversationView(
            **c.model_dump(),
            patient_name=names.get(c.patient_id),
            attendant_name=names.get(c.attendant_id) if c.attendant_id else None,
            preview=preview_of(latest[c.id].content) if c.id in latest else None,
        )
        for c in convs
    ]

@returns_errors
async def list_conversations(store: ClinicStorePort, actor: Actor) -> tuple[list[ConversationView] | None, CoreError | None]:
    """One-shot, role-scoped directory listing."""
    policy = visibility_for(actor)
    rows = await store.list_conversations(policy)
    # the store query already applies the policy; re-check so a divergent
    # backend can never leak a row into the view
    visible = [c for c in rows if policy.allows(c)]
    if len(visible) != len(rows):
        log.error(f"store returned {len(rows) - len(visible)} conversation(s) outside {type(policy).__name__}")
    return order_for_display(await decorate(store, visible)), None

class ConversationDirectory(LiveView[list[ConversationView]]):
    """Live, role-scoped list of conversations for one actor."""

    def __init__(self, store: ClinicStorePort, hub: ChangeHub, actor: Actor | None, **kw):
        super().__init__(hub, actor, **kw)
        self.store = store
        self.service = ConversationService(store)

    def _subscriptions(self):
        return [
            ("conversations", None, None),
            ("messages", {"INSERT"}, None),
        ]

    async def _fetch(self) -> list[ConversationView]:
        views, err = await list_conversations(self.store, self.actor)
        if err:
            raise err
        return views

    @property
    def items(self) -> list[ConversationView]:
        return list(self.snapshot or [])

    def get(self, conversation_id: uuid.UUID) -> ConversationView | None:
        return next((v for v in self.items if v.id == conversation_id), None)

    # ---- commands ----

    async def claim(self, conversation_id: uuid.UUID) -> tuple[ConversationOut | None, CoreError | None]:
        conv, err = await self.service.claim(self.actor, conversation_id)
        return await self._after_command(conv, err)

    async def release(self, conversation_id: uuid.UUID) -> tuple[ConversationOut | None, CoreError | None]:
        conv, err = await self.service.release(self.actor, conversation_id)
        return await self._after_command(conv, err)

    async def assign(self, conversation_id: uuid.UUID, attendant_id: uuid.UUID | None) -> tuple[ConversationOut | None, CoreError | None]:
        conv, err = await self.service.assign(self.actor, conversation_id, attendant_id)
        return await self._after_command(conv, err)

    async def set_status(self, conversation_id: uuid.UUID, status: ConversationStatus) -> tuple[ConversationOut | None, CoreError | None]:
        conv, err = await self.service.set_status(self.actor, conversation_id, status)
        return await self._after_command(conv, err)

    async def _after_command(self, conv, err):
        if isinstance(err, ConflictError) and isinstance(err.current, ConversationOut):
            # show who won; the refresh then drops the row if it left our scope
            try:
                err.current = (await decorate(self.store, [err.current]))[0]
            except SessionError:
                raise
            except CoreError as e:
                log.warning(f"could not name the winner of {err.current.id}: {e.message}")
            await self.refresh()
        return conv, err
