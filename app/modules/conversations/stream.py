import uuid
import logging
from app.core.config import settings
from app.core.enums import Channel, Role
from app.core.errors import CoreError, ValidationError, returns_errors
from app.core.security import ensure_actor
from app.core.paging import decode_position, encode_position
from app.modules.conversations.schemas import MessageOut, MessagePage, MessageView
from app.modules.conversations.service import ConversationService
from app.modules.profiles.schemas import Actor
from app.modules.realtime.hub import ChangeHub, RowFilter
from app.modules.realtime.live import LiveView
from app.platform.ports.store import ClinicStorePort

log = logging.getLogger(__name__)

async def with_sender_names(store: ClinicStorePort, messages: list[MessageOut]) -> list[MessageView]:
    senders = {m.sender_id for m in messages if m.sender_id}
    names = {pid: p.full_name for pid, p in (await store.get_profiles(senders)).items()}
    return [MessageView(**m.model_dump(), sender_name=names.get(m.sender_id) if m.sender_id else None) for m in messages]

@returns_errors
async def send_message(store: ClinicStorePort, actor: Actor, conversation_id: uuid.UUID, content: str, channel: Channel | str | None = None) -> tuple[MessageOut | None, CoreError | None]:
    actor = ensure_actor(actor)
    service = ConversationService(store)
    body = (content or "").strip()
    if not body:
        return None, ValidationError("message content is empty")
    conv, err = await service.get_visible(actor, conversation_id)
    if err:
        return None, err
    if channel is None:
        channel = conv.channel
    else:
        # any known channel is accepted, even one differing from the conversation's
        try:
            channel = Channel(channel)
        except ValueError:
            return None, ValidationError(f"unknown channel {channel!r}")
    if actor.role == Role.attendant and conv.attendant_id is None:
        # first reply takes ownership
        _, err = await service.claim(actor, conversation_id)
        if err:
            return None, err
    msg = await store.insert_message(conversation_id=conversation_id, sender_id=actor.id, content=body, channel=channel)
    log.debug(f"message {msg.id} sent to {conversation_id} by {actor.id}")
    return msg, None

@returns_errors
async def list_messages_page(store: ClinicStorePort, actor: Actor, conversation_id: uuid.UUID, cursor: str | None = None, limit: int | None = None) -> tuple[MessagePage | None, CoreError | None]:
    _, err = await ConversationService(store).get_visible(actor, conversation_id)
    if err:
        return None, err
    try:
        after = decode_position(cursor)
    except ValueError as e:
        return None, ValidationError(str(e))
    limit = max(1, min(limit or settings.MESSAGE_PAGE_SIZE, 500))
    rows = await store.list_messages(conversation_id, after=after, limit=limit + 1)
    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = encode_position(rows[-1].created_at, rows[-1].id) if has_more else None
    return MessagePage(items=await with_sender_names(store, rows), next_cursor=next_cursor), None

class MessageStream(LiveView[list[MessageView]]):
    """Ordered message log of one conversation, re-read in full on every insert."""

    def __init__(self, store: ClinicStorePort, hub: ChangeHub, actor: Actor | None, conversation_id: uuid.UUID, **kw):
        super().__init__(hub, actor, **kw)
        self.store = store
        self.conversation_id = conversation_id

    def _subscriptions(self):
        return [("messages", {"INSERT", "UPDATE"}, RowFilter("conversation_id", self.conversation_id))]

    async def _authorize(self) -> CoreError | None:
        _, err = await ConversationService(self.store).get_visible(self.actor, self.conversation_id)
        return err

    async def _fetch(self) -> list[MessageView]:
        rows = await self.store.list_messages(self.conversation_id)
        return await with_sender_names(self.store, rows)

    @property
    def messages(self) -> list[MessageView]:
        return list(self.snapshot or [])

    async def send(self, content: str, channel: Channel | str | None = None) -> tuple[MessageOut | None, CoreError | None]:
        return await send_message(self.store, self.actor, self.conversation_id, content, channel)

    async def rebind(self, conversation_id: uuid.UUID) -> tuple[list[MessageView] | None, CoreError | None]:
        """Point the stream at another conversation.

        Bumping the request sequence first means any response still in flight
        for the previous conversation is discarded when it lands.
        """
        if self.closed:
            raise RuntimeError("MessageStream is closed")
        self._issued += 1
        await self._unsubscribe()
        self.conversation_id = conversation_id
        self.snapshot = None
        self.error = None
        err = await self._authorize()
        if err:
            return None, err
        await self._subscribe()
        await self.refresh()
        return self.snapshot, self.error
