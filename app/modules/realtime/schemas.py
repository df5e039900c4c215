from datetime import datetime
from typing import Literal
from pydantic import BaseModel

ChangeType = Literal["INSERT", "UPDATE", "DELETE", "RESYNC"]

class ChangeEvent(BaseModel):
    """A row-level change on a watched table.

    ``record`` is best effort: producers may omit it, and consumers must treat
    an event without a record as "something in this table changed".
    """
    table: str
    type: ChangeType
    record: dict | None = None
    commit_timestamp: datetime | None = None
