import uuid

import pytest

from app.core.enums import Channel, ConversationStatus
from app.core.errors import ConflictError


@pytest.mark.asyncio
async def test_last_message_at_never_moves_backwards(store, people, open_conversation, clock):
    conv = await open_conversation(people["patient"])
    clock.advance(60)
    await store.insert_message(conversation_id=conv.id, sender_id=people["patient"].id, content="depois", channel=Channel.whatsapp)
    after_first = (await store.get_conversation(conv.id)).last_message_at

    clock.advance(-3600)  # clock skew
    await store.insert_message(conversation_id=conv.id, sender_id=None, content="antes?", channel=Channel.whatsapp)
    current = await store.get_conversation(conv.id)
    assert current.last_message_at >= after_first

    thread = await store.list_messages(conv.id)
    assert [m.content for m in thread] == ["depois", "antes?"]
    assert thread[0].created_at < thread[1].created_at


@pytest.mark.asyncio
async def test_compare_and_set_only_applies_on_expected_value(store, people, open_conversation):
    conv = await open_conversation(people["patient"])
    won = await store.compare_and_set_attendant(conv.id, expected=None, new=people["a1"].id, status=ConversationStatus.assigned)
    assert won.attendant_id == people["a1"].id
    lost = await store.compare_and_set_attendant(conv.id, expected=None, new=people["a2"].id, status=ConversationStatus.assigned)
    assert lost is None
    assert (await store.get_conversation(conv.id)).attendant_id == people["a1"].id


@pytest.mark.asyncio
async def test_rows_handed_out_are_copies(store, people, open_conversation):
    conv = await open_conversation(people["patient"])
    conv.subject = "mutated"
    assert (await store.get_conversation(conv.id)).subject is None


@pytest.mark.asyncio
async def test_message_for_unknown_conversation_conflicts(store):
    with pytest.raises(ConflictError):
        await store.insert_message(conversation_id=uuid.uuid4(), sender_id=None, content="x", channel=Channel.email)
