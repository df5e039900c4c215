import uuid
from pydantic import BaseModel, ConfigDict
from app.core.enums import Role

class Actor(BaseModel):
    """The authenticated party performing an operation."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    display_name: str = ""
    role: Role

class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    full_name: str
    email: str
    role: Role
    phone: str | None = None
    is_active: bool = True
