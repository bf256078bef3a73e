import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nearmatch.domain.presence import PresenceRegistry
from nearmatch.domain.store import MemoryStore

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class RecordingStore(MemoryStore):
	def __init__(self) -> None:
		super().__init__()
		self.presence_writes = []

	async def set_presence(self, user_id, is_online, at):
		self.presence_writes.append((user_id, is_online, at))
		# yield so concurrent registry calls can interleave
		await asyncio.sleep(0)
		await super().set_presence(user_id, is_online, at)


class StepClock:
	def __init__(self) -> None:
		self.calls = 0

	def __call__(self) -> datetime:
		self.calls += 1
		return T0 + timedelta(seconds=self.calls)


@pytest.mark.asyncio
async def test_single_connection_round_trip():
	store = RecordingStore()
	registry = PresenceRegistry(store)

	assert await registry.register("u1", "c1") is True
	assert registry.is_online("u1")
	assert (await store.get_presence("u1")).is_online is True

	assert await registry.unregister("c1") == "u1"
	assert registry.connections_for("u1") == ()
	assert not registry.is_online("u1")
	assert (await store.get_presence("u1")).is_online is False


@pytest.mark.asyncio
async def test_second_connection_keeps_user_online():
	store = RecordingStore()
	registry = PresenceRegistry(store)

	await registry.register("u1", "c1")
	assert await registry.register("u1", "c2") is False
	await registry.unregister("c1")

	assert registry.connections_for("u1") == ("c2",)
	assert (await store.get_presence("u1")).is_online is True
	assert [write[1] for write in store.presence_writes] == [True]


@pytest.mark.asyncio
async def test_concurrent_closes_write_one_offline_transition():
	store = RecordingStore()
	clock = StepClock()
	registry = PresenceRegistry(store, clock=clock)

	await asyncio.gather(registry.register("u1", "c1"), registry.register("u1", "c2"))
	await asyncio.gather(registry.unregister("c1"), registry.unregister("c2"))

	assert [(user, online) for user, online, _ in store.presence_writes] == [("u1", True), ("u1", False)]
	presence = await store.get_presence("u1")
	assert presence.is_online is False
	# the offline write is stamped by the last close, the final clock reading
	assert presence.last_seen == T0 + timedelta(seconds=clock.calls)
	assert registry.online_count() == 0


@pytest.mark.asyncio
async def test_unregister_unknown_connection_is_noop():
	store = RecordingStore()
	registry = PresenceRegistry(store)

	assert await registry.unregister("missing") is None
	assert store.presence_writes == []


@pytest.mark.asyncio
async def test_connection_cannot_move_between_users():
	registry = PresenceRegistry(MemoryStore())
	await registry.register("u1", "c1")

	with pytest.raises(ValueError):
		await registry.register("u2", "c1")
	assert registry.user_for("c1") == "u1"


@pytest.mark.asyncio
async def test_failed_online_write_rolls_back_registration():
	class FailingStore(MemoryStore):
		async def set_presence(self, user_id, is_online, at):
			raise RuntimeError("db down")

	registry = PresenceRegistry(FailingStore())

	with pytest.raises(RuntimeError):
		await registry.register("u1", "c1")
	assert registry.connections_for("u1") == ()
	assert registry.user_for("c1") is None


@pytest.mark.asyncio
async def test_reconcile_on_startup_clears_stale_online_flags():
	store = MemoryStore()
	await store.set_presence("u1", True, T0)
	registry = PresenceRegistry(store)

	assert await registry.reconcile_on_startup() == 1
	assert (await store.get_presence("u1")).is_online is False


@pytest.mark.asyncio
async def test_client_status_requires_live_connection():
	store = MemoryStore()
	registry = PresenceRegistry(store)

	assert await registry.apply_client_status("u1", True) is False
	assert (await store.get_presence("u1")).is_online is False

	await registry.register("u1", "c1")
	assert await registry.apply_client_status("u1", True) is True
	assert await registry.apply_client_status("u1", False) is False
	assert (await store.get_presence("u1")).is_online is False


class FlakyOfflineStore(MemoryStore):
	def __init__(self) -> None:
		super().__init__()
		self.fail_offline = False

	async def set_presence(self, user_id, is_online, at):
		if not is_online and self.fail_offline:
			raise ConnectionError("store unavailable")
		await super().set_presence(user_id, is_online, at)


@pytest.mark.asyncio
async def test_failed_offline_write_is_retried_by_flush():
	store = FlakyOfflineStore()
	registry = PresenceRegistry(store, clock=StepClock())
	await registry.register("u1", "c1")

	store.fail_offline = True
	with pytest.raises(ConnectionError):
		await registry.unregister("c1")
	assert registry.is_online("u1") is False
	assert registry.pending_offline() == ("u1",)
	assert await registry.flush_pending_offline() == 0

	store.fail_offline = False
	assert await registry.flush_pending_offline() == 1

	presence = await store.get_presence("u1")
	assert presence.is_online is False
	assert presence.last_seen == T0 + timedelta(seconds=2)
	assert registry.pending_offline() == ()


@pytest.mark.asyncio
async def test_reconnect_clears_owed_offline_write():
	store = FlakyOfflineStore()
	registry = PresenceRegistry(store)
	await registry.register("u1", "c1")
	store.fail_offline = True
	with pytest.raises(ConnectionError):
		await registry.unregister("c1")

	assert await registry.register("u1", "c2") is True
	store.fail_offline = False
	assert await registry.flush_pending_offline() == 0
	assert (await store.get_presence("u1")).is_online is True


@pytest.mark.asyncio
async def test_offline_sweeper_flushes_in_background():
	store = FlakyOfflineStore()
	registry = PresenceRegistry(store)
	await registry.register("u1", "c1")
	store.fail_offline = True
	with pytest.raises(ConnectionError):
		await registry.unregister("c1")
	store.fail_offline = False

	sweeper = asyncio.create_task(registry.run_offline_sweeper(0.1))
	try:
		for _ in range(50):
			if not registry.pending_offline():
				break
			await asyncio.sleep(0.05)
	finally:
		sweeper.cancel()
		await asyncio.gather(sweeper, return_exceptions=True)

	assert (await store.get_presence("u1")).is_online is False


@pytest.mark.asyncio
async def test_new_connection_reasserts_online_after_client_went_away():
	store = RecordingStore()
	registry = PresenceRegistry(store)
	await registry.register("u1", "c1")
	assert await registry.apply_client_status("u1", False) is False

	assert await registry.register("u1", "c2") is False

	assert (await store.get_presence("u1")).is_online is True
	assert len(registry.connections_for("u1")) == 2
	# a further device does not write again once the flag is back on
	writes = len(store.presence_writes)
	await registry.register("u1", "c3")
	assert len(store.presence_writes) == writes
