from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Iterator

import asyncpg
import pytest
import pytest_asyncio

from nearmatch.domain.errors import Forbidden, NotFound
from nearmatch.domain.matching import MatchEngine
from nearmatch.domain.presence import PresenceRegistry
from nearmatch.domain.store import NearbyCriteria, PostgresStore, Profile, distance_km, pair_key

pytestmark = pytest.mark.asyncio

NOW = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)
HOME = (45.5017, -73.5673)


@pytest.fixture(scope="module")
def postgres_container() -> Iterator["PostgresContainer"]:
    testcontainers = pytest.importorskip(
        "testcontainers.postgres",
        reason="testcontainers.postgres is required for integration tests",
    )
    PostgresContainer = testcontainers.PostgresContainer
    container = PostgresContainer("postgres:16-alpine")
    try:
        container.start()
    except Exception as exc:  # pragma: no cover - environment without docker
        pytest.skip(f"unable to start postgres container: {exc}")
    try:
        yield container
    finally:
        container.stop()


@pytest_asyncio.fixture(scope="function")
async def pg_store(postgres_container) -> AsyncIterator[PostgresStore]:
    url = postgres_container.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    pool = await asyncpg.create_pool(dsn=url, min_size=1, max_size=4)
    async with pool.acquire() as conn:
        await conn.execute("DROP SCHEMA IF EXISTS public CASCADE")
        await conn.execute("CREATE SCHEMA public")
    store = PostgresStore(pool)
    await store.ensure_schema()
    try:
        yield store
    finally:
        await pool.close()


async def _users(store: PostgresStore, *user_ids: str) -> None:
    for user_id in user_ids:
        await store.upsert_user(user_id)


async def test_unknown_receiver_maps_to_not_found(pg_store):
    await _users(pg_store, "alice")

    with pytest.raises(NotFound):
        await pg_store.record_message("alice", "ghost", "hi")
    with pytest.raises(NotFound):
        await pg_store.record_like("alice", "ghost")
    with pytest.raises(NotFound):
        await pg_store.record_block("ghost", "alice")


async def test_messages_are_ordered_and_summarised_per_counterpart(pg_store):
    await _users(pg_store, "alice", "bob", "carol")
    m1 = await pg_store.record_message("alice", "bob", "one")
    m2 = await pg_store.record_message("bob", "alice", "two")
    m3 = await pg_store.record_message("alice", "bob", "three")
    m4 = await pg_store.record_message("carol", "alice", "hey")

    assert m1.id < m2.id < m3.id < m4.id
    assert m1.created_at <= m2.created_at <= m3.created_at

    conversation = await pg_store.conversation_between("bob", "alice")
    assert [m.id for m in conversation] == [m1.id, m2.id, m3.id]

    latest = await pg_store.latest_message_per_counterpart("alice")
    assert [(m.id, m.counterpart("alice")) for m in latest] == [(m4.id, "carol"), (m3.id, "bob")]


async def test_mark_read_is_receiver_only_and_monotonic(pg_store):
    await _users(pg_store, "alice", "bob")
    message = await pg_store.record_message("alice", "bob", "read me")

    with pytest.raises(Forbidden):
        await pg_store.mark_read(message.id, "alice")
    with pytest.raises(NotFound):
        await pg_store.mark_read(message.id + 100, "bob")

    first = await pg_store.mark_read(message.id, "bob")
    again = await pg_store.mark_read(message.id, "bob")
    assert first.is_read is True and again.is_read is True
    assert (await pg_store.get_message(message.id)).is_read is True


async def test_likes_and_blocks_are_idempotent(pg_store):
    await _users(pg_store, "alice", "bob")

    like = await pg_store.record_like("alice", "bob")
    assert (await pg_store.record_like("alice", "bob")).id == like.id
    assert await pg_store.mutual_partners("alice") == set()
    await pg_store.record_like("bob", "alice")
    assert await pg_store.mutual_partners("alice") == {"bob"}
    assert await pg_store.remove_like("alice", "bob") is True
    assert await pg_store.remove_like("alice", "bob") is False

    block = await pg_store.record_block("alice", "bob")
    assert (await pg_store.record_block("alice", "bob")).id == block.id
    assert await pg_store.is_blocked_either_way("bob", "alice") is True
    assert await pg_store.blocked_ids("bob") == {"alice"}
    assert await pg_store.remove_block("alice", "bob") is True
    assert await pg_store.blocked_ids("bob") == set()


async def test_pair_lock_lets_exactly_one_reciprocal_like_see_the_match(pg_store):
    engine = MatchEngine(pg_store)
    for round_no in range(5):
        left, right = f"l{round_no}", f"r{round_no}"
        await _users(pg_store, left, right)

        outcomes = await asyncio.gather(
            engine.like_and_check_match(left, right),
            engine.like_and_check_match(right, left),
        )

        assert sorted(is_match for _, is_match in outcomes) == [False, True]


async def test_transaction_lock_serialises_same_key(pg_store):
    events = []

    async def unit(name: str) -> None:
        async with pg_store.transaction(lock_key=pair_key("a", "b")):
            events.append(f"{name}:start")
            await asyncio.sleep(0.05)
            events.append(f"{name}:end")

    await asyncio.gather(unit("first"), unit("second"))

    assert events[0].endswith(":start") and events[1].endswith(":end")
    assert events[0].split(":")[0] == events[1].split(":")[0]


async def test_presence_round_trip_through_registry(pg_store):
    registry = PresenceRegistry(pg_store, clock=lambda: NOW)

    await registry.register("alice", "c1")
    assert (await pg_store.get_presence("alice")).is_online is True

    await registry.unregister("c1")
    presence = await pg_store.get_presence("alice")
    assert presence.is_online is False
    assert presence.last_seen == NOW

    await pg_store.set_presence("bob", True, NOW)
    assert await pg_store.reset_presence(NOW + timedelta(minutes=1)) == 1


async def test_nearby_profiles_filters_in_sql(pg_store):
    async def profile(user_id: str, **fields) -> None:
        fields.setdefault("age", 25)
        await pg_store.upsert_profile(Profile(user_id=user_id, display_name=user_id.title(), **fields))

    await profile("me", latitude=HOME[0], longitude=HOME[1])
    await profile("online_close", age=30, latitude=45.51, longitude=-73.57)
    await profile("offline_recent", latitude=45.52, longitude=-73.58)
    await profile("offline_old", latitude=45.50, longitude=-73.56)
    await profile("too_old", age=70, latitude=45.50, longitude=-73.56)
    await profile("far_away", latitude=43.6532, longitude=-79.3832)
    await profile("hidden", is_visible=False, latitude=45.50, longitude=-73.56)
    await profile("blocked_me", latitude=45.50, longitude=-73.56)
    await profile("nowhere")
    await pg_store.record_block("blocked_me", "me")
    await pg_store.set_presence("online_close", True, NOW - timedelta(days=3))
    await pg_store.set_presence("offline_recent", False, NOW - timedelta(minutes=5))
    await pg_store.set_presence("offline_old", False, NOW - timedelta(days=10))

    rows = await pg_store.nearby_profiles(
        NearbyCriteria(
            viewer_id="me",
            age_min=18,
            age_max=65,
            max_distance_km=25,
            limit=10,
            latitude=HOME[0],
            longitude=HOME[1],
        )
    )

    assert [p.user_id for p, _ in rows] == ["online_close", "offline_recent", "offline_old"]
    for found, distance in rows:
        assert distance == pytest.approx(distance_km(*HOME, found.latitude, found.longitude), rel=1e-6)

    without_location = await pg_store.nearby_profiles(
        NearbyCriteria(viewer_id="me", age_min=18, age_max=65, max_distance_km=25, limit=2, online_only=True)
    )
    assert [(p.user_id, d) for p, d in without_location] == [("online_close", None)]
