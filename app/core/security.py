import uuid
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import ValidationError as PydanticValidationError
from app.core.config import settings
from app.core.errors import SessionError
from app.modules.profiles.schemas import Actor

http_bearer = HTTPBearer(auto_error=False)

def ensure_actor(actor: Actor | None) -> Actor:
    """Session boundary check shared by every core operation."""
    if actor is None or not isinstance(actor, Actor):
        raise SessionError("no authenticated actor")
    return actor

def actor_from_claims(data: dict) -> Actor:
    try:
        return Actor(
            id=uuid.UUID(str(data.get("sub") or data.get("user_id"))),
            display_name=data.get("name") or "",
            role=data.get("role"),
        )
    except (ValueError, PydanticValidationError) as e:
        raise SessionError(f"invalid session claims: {e}") from e

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def issue_token(actor: Actor) -> str:
    # used by local tooling and tests; production tokens come from the identity provider
    claims = {"sub": str(actor.id), "role": actor.role.value, "name": actor.display_name}
    if settings.REQUIRED_AUDIENCE:
        claims["aud"] = settings.REQUIRED_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

async def get_actor(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Actor:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    data = _decode_token(creds.credentials)
    try:
        return actor_from_claims(data)
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
