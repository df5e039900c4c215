import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from app.core.enums import Channel, ConversationStatus, Priority, MessageStatus

# Conversations
class ConversationCreate(BaseModel):
    channel: Channel
    subject: str | None = Field(default=None, max_length=200)
    priority: Priority = Priority.medium

class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    patient_id: uuid.UUID
    attendant_id: uuid.UUID | None = None
    channel: Channel
    status: ConversationStatus
    priority: Priority
    subject: str | None = None
    created_at: datetime
    last_message_at: datetime

class ConversationView(ConversationOut):
    """Directory row: the conversation plus names and a latest-message preview."""
    patient_name: str | None = None
    attendant_name: str | None = None
    preview: str | None = None

class AssignRequest(BaseModel):
    attendant_id: uuid.UUID | None

class StatusChange(BaseModel):
    status: ConversationStatus

# Messages
class MessageCreate(BaseModel):
    content: str
    channel: Channel | None = None  # defaults to the conversation's channel

class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID | None = None
    content: str
    channel: Channel
    message_type: str = "text"
    status: MessageStatus = MessageStatus.sent
    created_at: datetime

class MessageView(MessageOut):
    sender_name: str | None = None

class MessagePage(BaseModel):
    items: list[MessageView]
    next_cursor: str | None = None
