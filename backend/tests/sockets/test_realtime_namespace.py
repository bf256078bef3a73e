from unittest.mock import AsyncMock

import pytest
import socketio

from nearmatch.domain.chat import DeliveryPipeline
from nearmatch.domain.presence import PresenceRegistry
from nearmatch.domain.realtime import ConnectionLifecycle, ConnectionState, RealtimeNamespace
from nearmatch.domain.store import MemoryStore
from nearmatch.infra import jwt as jwt_helper
from nearmatch.settings import settings


def _scope(*headers: tuple) -> dict:
	return {"asgi.scope": {"headers": [(name.encode(), value.encode()) for name, value in headers]}}


@pytest.fixture
def registry(store):
	return PresenceRegistry(store)


def _namespace(registry, **kwargs) -> RealtimeNamespace:
	server = socketio.AsyncServer(async_mode="asgi")
	namespace = RealtimeNamespace(ConnectionLifecycle(registry, **kwargs))
	server.register_namespace(namespace)
	namespace.send = AsyncMock()
	return namespace


@pytest.mark.asyncio
async def test_connect_then_auth_frame_registers_presence(store, registry):
	namespace = _namespace(registry)

	await namespace.trigger_event("connect", "sid-1", _scope(("x-user-id", "alice")))
	assert namespace.lifecycle.state_of("sid-1") is ConnectionState.CONNECTED
	assert registry.connections_for("alice") == ()

	await namespace.trigger_event("message", "sid-1", {"type": "auth", "userId": "alice"})

	assert registry.connections_for("alice") == ("sid-1",)
	assert (await store.get_presence("alice")).is_online is True


@pytest.mark.asyncio
async def test_connect_with_bearer_token_in_auth_payload(registry):
	namespace = _namespace(registry)
	token = jwt_helper.encode_access({"sub": "bob"})

	await namespace.trigger_event("connect", "sid-1", _scope(), {"token": token})
	await namespace.trigger_event("message", "sid-1", '{"type": "auth", "userId": "bob"}')

	assert namespace.lifecycle.user_of("sid-1") == "bob"


@pytest.mark.asyncio
async def test_connect_with_invalid_token_is_refused(registry):
	namespace = _namespace(registry)

	with pytest.raises(socketio.exceptions.ConnectionRefusedError):
		await namespace.trigger_event("connect", "sid-1", _scope(("authorization", "Bearer garbage")))
	assert namespace.lifecycle.state_of("sid-1") is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_dev_header_is_ignored_outside_dev(registry):
	settings.environment = "production"
	namespace = _namespace(registry)

	await namespace.trigger_event("connect", "sid-1", _scope(("x-user-id", "alice")))
	await namespace.trigger_event("message", "sid-1", {"type": "auth", "userId": "alice"})

	assert namespace.lifecycle.state_of("sid-1") is ConnectionState.CONNECTED
	assert registry.connections_for("alice") == ()


@pytest.mark.asyncio
async def test_malformed_messages_keep_connection_alive(registry):
	namespace = _namespace(registry, allow_asserted_identity=True)
	await namespace.trigger_event("connect", "sid-1", _scope())

	for frame in ("{oops", 7, [], {"type": "typing"}):
		await namespace.trigger_event("message", "sid-1", frame)
	await namespace.trigger_event("message", "sid-1", {"type": "auth", "userId": "carol"})

	assert namespace.lifecycle.user_of("sid-1") == "carol"


@pytest.mark.asyncio
async def test_disconnect_unregisters_and_marks_offline(store, registry):
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", _scope(("x-user-id", "alice")))
	await namespace.trigger_event("message", "sid-1", {"type": "auth", "userId": "alice"})

	await namespace.trigger_event("disconnect", "sid-1")

	assert registry.connections_for("alice") == ()
	presence = await store.get_presence("alice")
	assert presence.is_online is False
	assert presence.last_seen is not None


@pytest.mark.asyncio
async def test_pipeline_pushes_new_message_frames_to_each_sid(store, registry, seed_users):
	await seed_users("alice", "bob")
	namespace = _namespace(registry)
	pipeline = DeliveryPipeline(store, registry, namespace)
	for sid, user in (("sid-a", "alice"), ("sid-b1", "bob"), ("sid-b2", "bob")):
		await namespace.trigger_event("connect", sid, _scope(("x-user-id", user)))
		await namespace.trigger_event("message", sid, {"type": "auth", "userId": user})

	message = await pipeline.send("alice", "bob", "ping")

	targets = sorted(call.kwargs["to"] for call in namespace.send.await_args_list)
	assert targets == ["sid-a", "sid-b1", "sid-b2"]
	frame = namespace.send.await_args_list[0].args[0]
	assert frame["type"] == "new_message"
	assert frame["data"]["id"] == message.id
	assert frame["data"]["content"] == "ping"


@pytest.mark.asyncio
async def test_disconnect_survives_failed_offline_write():
	class OfflineWriteFails(MemoryStore):
		async def set_presence(self, user_id, is_online, at):
			if not is_online:
				raise ConnectionError("store unavailable")
			await super().set_presence(user_id, is_online, at)

	store = OfflineWriteFails()
	registry = PresenceRegistry(store)
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", _scope(("x-user-id", "alice")))
	await namespace.trigger_event("message", "sid-1", {"type": "auth", "userId": "alice"})

	await namespace.trigger_event("disconnect", "sid-1")

	assert namespace.lifecycle.state_of("sid-1") is ConnectionState.CLOSED
	assert registry.connections_for("alice") == ()
	assert registry.pending_offline() == ("alice",)
