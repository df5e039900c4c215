import uuid
from datetime import datetime
from pydantic import BaseModel
from app.core.enums import Role

class PerformanceSnapshot(BaseModel):
    actor_id: uuid.UUID | None = None  # None = system-wide
    window_start: datetime
    generated_at: datetime
    total: int = 0
    by_status: dict[str, int] = {}
    resolved: int = 0
    pending: int = 0       # open or assigned
    responded: int = 0
    unanswered: int = 0    # no reply from anyone but the patient yet
    first_response_seconds: dict[uuid.UUID, float] = {}
    avg_first_response_seconds: float | None = None
    avg_response_time: str | None = None

class TeamMemberStats(BaseModel):
    id: uuid.UUID
    name: str
    role: Role
    chats_today: int = 0
    resolved_today: int = 0
    avg_first_response_seconds: float | None = None
    avg_response_time: str | None = None
