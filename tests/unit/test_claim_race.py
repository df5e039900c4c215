import asyncio

import pytest

from app.core.enums import ConversationStatus
from app.core.errors import ConflictError
from app.modules.conversations.directory import ConversationDirectory


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(store, hub, people, actors, open_conversation, settle):
    conv = await open_conversation(people["patient"])
    d1 = ConversationDirectory(store, hub, actors["a1"])
    d2 = ConversationDirectory(store, hub, actors["a2"])
    await d1.open()
    await d2.open()
    assert d1.get(conv.id) and d2.get(conv.id)

    results = await asyncio.gather(d1.claim(conv.id), d2.claim(conv.id))
    winners = [(view, res) for view, res in zip((d1, d2), results) if res[1] is None]
    losers = [(view, res) for view, res in zip((d1, d2), results) if res[1] is not None]
    assert len(winners) == 1 and len(losers) == 1

    (win_view, (claimed, _)), (lose_view, (nothing, err)) = winners[0], losers[0]
    assert claimed.attendant_id == win_view.actor.id
    assert claimed.status == ConversationStatus.assigned
    assert nothing is None
    assert isinstance(err, ConflictError)
    assert err.current.attendant_id == win_view.actor.id
    assert err.current.attendant_name == win_view.actor.display_name

    await settle(d1, d2)
    assert lose_view.get(conv.id) is None
    assert win_view.get(conv.id).attendant_id == win_view.actor.id

    stored = await store.get_conversation(conv.id)
    assert stored.attendant_id == win_view.actor.id
    await d1.close()
    await d2.close()


@pytest.mark.asyncio
async def test_claiming_an_owned_conversation_again_conflicts(store, hub, people, actors, open_conversation):
    conv = await open_conversation(people["patient"])
    directory = ConversationDirectory(store, hub, actors["a1"])
    _, err = await directory.claim(conv.id)
    assert err is None
    _, err = await directory.claim(conv.id)
    assert isinstance(err, ConflictError)
    assert err.current.attendant_id == people["a1"].id
