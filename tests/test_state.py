import asyncio

import pytest

from livepoll.errors import InvalidOption, PollNotFound
from livepoll.state import new_poll_id


def _consistent(poll):
    return poll.total_votes == sum(opt.votes for opt in poll.options)


def test_new_poll_id_shape():
    poll_id = new_poll_id()
    assert len(poll_id) == 10
    assert poll_id.replace("-", "").replace("_", "").isalnum()


@pytest.mark.asyncio
async def test_create_and_get(store):
    poll = await store.create("Best color?", ["Red", "Blue", "Green"])

    fetched = await store.get(poll.poll_id)
    assert fetched.question == "Best color?"
    assert [o.text for o in fetched.options] == ["Red", "Blue", "Green"]
    assert [o.votes for o in fetched.options] == [0, 0, 0]
    assert fetched.total_votes == 0


@pytest.mark.asyncio
async def test_get_unknown_returns_none(store):
    assert await store.get("nope") is None


@pytest.mark.asyncio
async def test_apply_vote_updates_option_and_total(store):
    poll = await store.create("Q", ["A", "B"])

    updated = await store.apply_vote(poll.poll_id, 1)

    assert [o.votes for o in updated.options] == [0, 1]
    assert updated.total_votes == 1
    assert _consistent(updated)


@pytest.mark.asyncio
@pytest.mark.parametrize("index", [-1, 2, 99])
async def test_apply_vote_invalid_option_leaves_state(store, index):
    poll = await store.create("Q", ["A", "B"])
    await store.apply_vote(poll.poll_id, 0)

    with pytest.raises(InvalidOption):
        await store.apply_vote(poll.poll_id, index)

    after = await store.get(poll.poll_id)
    assert [o.votes for o in after.options] == [1, 0]
    assert after.total_votes == 1


@pytest.mark.asyncio
async def test_apply_vote_unknown_poll(store):
    with pytest.raises(PollNotFound):
        await store.apply_vote("missing", 0)


@pytest.mark.asyncio
async def test_returned_polls_are_snapshots(store):
    poll = await store.create("Q", ["A", "B"])
    before = await store.get(poll.poll_id)

    await store.apply_vote(poll.poll_id, 0)

    assert before.total_votes == 0
    assert before.options[0].votes == 0


@pytest.mark.asyncio
async def test_concurrent_votes_are_not_lost(store):
    poll = await store.create("Q", ["A", "B", "C"])

    await asyncio.gather(*(store.apply_vote(poll.poll_id, i % 3) for i in range(300)))

    after = await store.get(poll.poll_id)
    assert [o.votes for o in after.options] == [100, 100, 100]
    assert after.total_votes == 300
    assert _consistent(after)
