import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, ForeignKey, Enum, Text, TIMESTAMP, JSON, Index
from app.core.base import Base, CreatedMixin, utcnow
from app.core.enums import Channel, ConversationStatus, Priority, MessageStatus

channel_type = Enum(Channel, name="channel_type")

class Conversation(Base, CreatedMixin):
    __tablename__ = "conversations"

    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), index=True)
    attendant_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("profiles.id"), nullable=True, index=True)  # null until claimed
    channel: Mapped[Channel] = mapped_column(channel_type)
    status: Mapped[ConversationStatus] = mapped_column(Enum(ConversationStatus, name="conversation_status"), default=ConversationStatus.open)
    priority: Mapped[Priority] = mapped_column(Enum(Priority, name="conversation_priority"), default=Priority.medium)
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_message_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, index=True)

class Message(Base, CreatedMixin):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at", "id"),)

    conversation_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("conversations.id"))
    sender_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)  # null = system message
    content: Mapped[str] = mapped_column(Text)
    channel: Mapped[Channel] = mapped_column(channel_type)
    message_type: Mapped[str] = mapped_column(String(16), default="text")
    status: Mapped[MessageStatus] = mapped_column(Enum(MessageStatus, name="message_status"), default=MessageStatus.sent)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
