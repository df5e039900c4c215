import asyncio
import json
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from app.core.errors import to_http
from app.core.security import get_actor
from app.modules.conversations.directory import ConversationDirectory
from app.modules.conversations.schemas import ConversationView
from app.modules.profiles.schemas import Actor
from app.platform.provider_registry import registry

router = APIRouter()
log = logging.getLogger("realtime.sse")

HEARTBEAT_SECONDS = 15.0

def sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"

def _payload(views: list[ConversationView]) -> list[dict]:
    return [v.model_dump(mode="json") for v in views]

@router.get("/realtime/conversations")
async def conversation_events(request: Request, actor: Actor = Depends(get_actor)):
    """Role-scoped conversation list, pushed again whenever it changes."""
    queue: asyncio.Queue = asyncio.Queue()
    view = ConversationDirectory(
        registry.store(), registry.change_hub(), actor,
        on_change=lambda views: queue.put_nowait(("conversations", _payload(views))),
        on_error=lambda err: queue.put_nowait(("error", {"code": err.code, "message": err.message})),
    )
    snapshot, err = await view.open()
    if err and snapshot is None:
        await view.close()
        raise to_http(err)

    async def event_stream():
        try:
            # open() already pushed the first snapshot through on_change
            while not view.closed or not queue.empty():
                if await request.is_disconnected():
                    break
                try:
                    event, data = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield sse(event, data)
        finally:
            await view.close()
            log.debug(f"conversation stream for {actor.id} closed")

    return StreamingResponse(event_stream(), media_type="text/event-stream")
