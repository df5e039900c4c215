import uuid
from fastapi import APIRouter, Depends, Query
from app.core.errors import to_http
from app.core.security import get_actor
from app.modules.conversations.directory import decorate, list_conversations
from app.modules.conversations.schemas import (
    AssignRequest, ConversationCreate, ConversationOut, ConversationView,
    MessageCreate, MessageOut, MessagePage, StatusChange,
)
from app.modules.conversations.service import ConversationService
from app.modules.conversations.stream import list_messages_page, send_message
from app.modules.profiles.schemas import Actor
from app.platform.ports.store import ClinicStorePort
from app.platform.provider_registry import registry

router = APIRouter()

def get_store() -> ClinicStorePort:
    return registry.store()

def svc(store: ClinicStorePort = Depends(get_store)) -> ConversationService:
    return ConversationService(store)

async def _view(store: ClinicStorePort, obj, err) -> ConversationView:
    if err:
        raise to_http(err)
    return (await decorate(store, [obj]))[0]

# Conversations
@router.get("/conversations", response_model=list[ConversationView])
async def get_conversations(actor: Actor = Depends(get_actor), store: ClinicStorePort = Depends(get_store)):
    views, err = await list_conversations(store, actor)
    if err:
        raise to_http(err)
    return views

@router.post("/conversations", response_model=ConversationView, status_code=201)
async def create_conversation(
    payload: ConversationCreate,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
    service: ConversationService = Depends(svc),
):
    obj, err = await service.open_conversation(actor, payload)
    return await _view(store, obj, err)

@router.post("/conversations/{conversation_id}/claim", response_model=ConversationView)
async def claim_conversation(
    conversation_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
    service: ConversationService = Depends(svc),
):
    obj, err = await service.claim(actor, conversation_id)
    return await _view(store, obj, err)

@router.post("/conversations/{conversation_id}/release", response_model=ConversationView)
async def release_conversation(
    conversation_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
    service: ConversationService = Depends(svc),
):
    obj, err = await service.release(actor, conversation_id)
    return await _view(store, obj, err)

@router.post("/conversations/{conversation_id}/assign", response_model=ConversationView)
async def assign_conversation(
    conversation_id: uuid.UUID,
    payload: AssignRequest,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
    service: ConversationService = Depends(svc),
):
    obj, err = await service.assign(actor, conversation_id, payload.attendant_id)
    return await _view(store, obj, err)

@router.post("/conversations/{conversation_id}/status", response_model=ConversationView)
async def change_conversation_status(
    conversation_id: uuid.UUID,
    payload: StatusChange,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
    service: ConversationService = Depends(svc),
):
    obj, err = await service.set_status(actor, conversation_id, payload.status)
    return await _view(store, obj, err)

# Messages
@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_messages(
    conversation_id: uuid.UUID,
    cursor: str | None = None,
    limit: int | None = Query(default=None, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
):
    page, err = await list_messages_page(store, actor, conversation_id, cursor, limit)
    if err:
        raise to_http(err)
    return page

@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def create_message(
    conversation_id: uuid.UUID,
    payload: MessageCreate,
    actor: Actor = Depends(get_actor),
    store: ClinicStorePort = Depends(get_store),
):
    obj, err = await send_message(store, actor, conversation_id, payload.content, payload.channel)
    if err:
        raise to_http(err)
    return obj
