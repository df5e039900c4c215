import base64, binascii, json, uuid
from datetime import datetime

def encode_cursor(obj: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj, separators=(",",":")).encode()).decode()

def decode_cursor(token: str | None) -> dict | None:
    if not token: return None
    return json.loads(base64.urlsafe_b64decode(token.encode()).decode())

# keyset position (created_at, id) of the last row of a page

def encode_position(created_at: datetime, row_id: uuid.UUID) -> str:
    return encode_cursor({"t": created_at.isoformat(), "id": str(row_id)})

def decode_position(token: str | None) -> tuple[datetime, uuid.UUID] | None:
    try:
        obj = decode_cursor(token)
        if obj is None:
            return None
        return datetime.fromisoformat(obj["t"]), uuid.UUID(obj["id"])
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise ValueError(f"malformed cursor: {e}") from e
