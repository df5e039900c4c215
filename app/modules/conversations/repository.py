import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, func, and_, tuple_
from sqlalchemy.orm import aliased
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.base import utcnow
from app.core.enums import ConversationStatus
from app.modules.conversations.models import Conversation, Message
from app.modules.conversations.visibility import VisibilityPolicy

class ConversationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Conversation:
        obj = Conversation(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, cid: uuid.UUID) -> Conversation | None:
        res = await self.session.execute(select(Conversation).where(Conversation.id == cid))
        return res.scalar_one_or_none()

    async def list_visible(self, policy: VisibilityPolicy) -> Sequence[Conversation]:
        q = select(Conversation).where(policy.clause()).order_by(Conversation.last_message_at.desc(), Conversation.id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def created_since(self, since: datetime, *, attendant_id: uuid.UUID | None = None, patient_id: uuid.UUID | None = None) -> Sequence[Conversation]:
        cond = [Conversation.created_at >= since]
        if attendant_id: cond.append(Conversation.attendant_id == attendant_id)
        if patient_id:   cond.append(Conversation.patient_id == patient_id)
        q = select(Conversation).where(and_(*cond)).order_by(Conversation.created_at.asc(), Conversation.id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def update_where(self, cid: uuid.UUID, *conditions, **values) -> Conversation | None:
        # single conditional UPDATE ... RETURNING; None when no row matched
        q = (
            update(Conversation)
            .where(Conversation.id == cid, *conditions)
            .values(**values)
            .returning(Conversation)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def compare_and_set_attendant(self, cid: uuid.UUID, expected: uuid.UUID | None, new: uuid.UUID | None, status: ConversationStatus) -> Conversation | None:
        cond = Conversation.attendant_id.is_(None) if expected is None else Conversation.attendant_id == expected
        return await self.update_where(cid, cond, attendant_id=new, status=status)

    async def touch_last_message(self, cid: uuid.UUID, at: datetime) -> Conversation | None:
        # never moves backwards
        return await self.update_where(cid, last_message_at=func.greatest(Conversation.last_message_at, at))

class MessageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Message:
        obj = Message(created_at=utcnow(), **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def list_for_conversation(self, conversation_id: uuid.UUID, *, after: tuple[datetime, uuid.UUID] | None = None, limit: int | None = None) -> Sequence[Message]:
        q = select(Message).where(Message.conversation_id == conversation_id)
        if after is not None:
            q = q.where(tuple_(Message.created_at, Message.id) > tuple_(*after))
        q = q.order_by(Message.created_at.asc(), Message.id.asc())
        if limit:
            q = q.limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_for_conversations(self, conversation_ids: list[uuid.UUID]) -> Sequence[Message]:
        if not conversation_ids:
            return []
        q = select(Message).where(Message.conversation_id.in_(conversation_ids)).order_by(Message.created_at.asc(), Message.id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def latest_per_conversation(self, conversation_ids: list[uuid.UUID]) -> Sequence[Message]:
        # one query for the whole directory instead of one per conversation
        if not conversation_ids:
            return []
        ranked = (
            select(
                Message,
                func.row_number().over(
                    partition_by=Message.conversation_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                ).label("rn"),
            )
            .where(Message.conversation_id.in_(conversation_ids))
            .subquery()
        )
        latest = aliased(Message, ranked)
        res = await self.session.execute(select(latest).where(ranked.c.rn == 1))
        return res.scalars().all()
