import enum

# Literal sets shared with the backing store; values must not change.

class Role(str, enum.Enum):
    patient = "patient"
    attendant = "attendant"
    manager = "manager"

class Channel(str, enum.Enum):
    whatsapp = "whatsapp"
    instagram = "instagram"
    facebook = "facebook"
    email = "email"
    phone = "phone"
    web_chat = "web_chat"

class ConversationStatus(str, enum.Enum):
    open = "open"
    assigned = "assigned"
    resolved = "resolved"
    closed = "closed"

class Priority(str, enum.Enum):
    high = "high"
    medium = "medium"
    low = "low"

class MessageStatus(str, enum.Enum):
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"

class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"

PENDING_STATUSES = {ConversationStatus.open, ConversationStatus.assigned}
