"""Tests for the in-memory and SQL history stores."""

from datetime import datetime, timedelta, timezone

import pytest

from migration_expert.core.database import create_all_tables, drop_all_tables, make_engine, make_session_factory
from migration_expert.core.errors import PersistenceError
from migration_expert.features.history.models import NewChatMessage
from migration_expert.features.history.store import InMemoryHistoryStore, clamp_limit
from migration_expert.features.history.store_sql import SqlHistoryStore

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Returns queued timestamps in order, then repeats the last one."""

    def __init__(self, *offsets):
        self.values = [BASE + timedelta(seconds=s) for s in offsets]

    def __call__(self):
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


def _msg(text, role="user", **kwargs):
    return NewChatMessage(role=role, message=text, **kwargs)


@pytest.fixture
def sql_factory():
    engine = make_engine("sqlite://")
    create_all_tables(engine)
    yield make_session_factory(engine)
    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store_factory(request, sql_factory):
    def _make(now_fn=None, max_page_size=100):
        kwargs = {"max_page_size": max_page_size}
        if now_fn is not None:
            kwargs["now_fn"] = now_fn
        if request.param == "memory":
            return InMemoryHistoryStore(**kwargs)
        return SqlHistoryStore(sql_factory, **kwargs)

    return _make


@pytest.mark.asyncio
async def test_append_returns_stored_message(store_factory):
    store = store_factory(now_fn=Clock(0))

    stored = await store.append("u1", "c1", _msg("Canada please", country="Canada"))

    assert stored.id >= 1
    assert stored.user_id == "u1"
    assert stored.conversation_id == "c1"
    assert stored.role == "user"
    assert stored.country == "Canada"
    assert stored.is_plan is False
    assert stored.created_at == BASE


@pytest.mark.asyncio
async def test_list_orders_by_created_at_even_when_appended_out_of_order(store_factory):
    store = store_factory(now_fn=Clock(10, 0, 5))
    await store.append("u1", "c1", _msg("third"))
    await store.append("u1", "c1", _msg("first"))
    await store.append("u1", "c1", _msg("second"))

    history = await store.list("u1", "c1")

    assert [m.message for m in history] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_equal_timestamps_keep_insertion_order(store_factory):
    store = store_factory(now_fn=Clock(0))
    for text in ["a", "b", "c"]:
        await store.append("u1", "c1", _msg(text))

    history = await store.list("u1", "c1")

    assert [m.message for m in history] == ["a", "b", "c"]
    assert [m.id for m in history] == sorted(m.id for m in history)


@pytest.mark.asyncio
async def test_scopes_are_isolated(store_factory):
    store = store_factory()
    await store.append("u1", "c1", _msg("mine"))
    await store.append("u2", "c1", _msg("theirs"))
    await store.append("u1", "c2", _msg("other conversation"))

    assert [m.message for m in await store.list("u1", "c1")] == ["mine"]
    assert [m.message for m in await store.list("u2", "c1")] == ["theirs"]
    assert await store.list("u3", "c1") == []


@pytest.mark.asyncio
async def test_clear_is_scoped_and_idempotent(store_factory):
    store = store_factory()
    await store.append("u1", "c1", _msg("one"))
    await store.append("u1", "c1", _msg("two", role="assistant", is_plan=True))
    await store.append("u2", "c1", _msg("keep"))

    assert await store.clear("u1", "c1") == 2
    assert await store.list("u1", "c1") == []
    assert await store.clear("u1", "c1") == 0
    assert [m.message for m in await store.list("u2", "c1")] == ["keep"]


@pytest.mark.asyncio
async def test_list_limit_is_clamped(store_factory):
    store = store_factory(now_fn=Clock(0), max_page_size=3)
    for i in range(5):
        await store.append("u1", "c1", _msg(f"m{i}"))

    assert [m.message for m in await store.list("u1", "c1", limit=2)] == ["m0", "m1"]
    assert len(await store.list("u1", "c1", limit=50)) == 3
    assert len(await store.list("u1", "c1", limit=0)) == 1


def test_clamp_limit():
    assert clamp_limit(500) == 100
    assert clamp_limit(-3) == 1
    assert clamp_limit(42) == 42


@pytest.mark.asyncio
async def test_plan_flag_round_trips_through_sql(sql_factory):
    store = SqlHistoryStore(sql_factory, now_fn=Clock(0))
    await store.append("u1", "c1", _msg("## Plan", role="assistant", is_plan=True, country="Canada"))

    [stored] = await store.list("u1", "c1")

    assert stored.is_plan is True
    assert stored.role == "assistant"
    assert stored.created_at.tzinfo is not None
    assert stored.public_dict()["is_plan"] is True


@pytest.mark.asyncio
async def test_sql_failures_become_persistence_errors():
    engine = make_engine("sqlite://")
    # No tables created
    store = SqlHistoryStore(make_session_factory(engine))

    with pytest.raises(PersistenceError):
        await store.append("u1", "c1", _msg("lost"))
    with pytest.raises(PersistenceError):
        await store.list("u1", "c1")
    with pytest.raises(PersistenceError):
        await store.clear("u1", "c1")
    engine.dispose()
