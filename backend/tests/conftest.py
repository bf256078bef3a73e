import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from nearmatch.domain.store import MemoryStore, Profile
from nearmatch.main import build_app
from nearmatch.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from nearmatch.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode.
	"""
	original_env = settings.environment
	original_metrics_public = settings.obs_metrics_public
	original_admin_token = settings.obs_admin_token
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.obs_metrics_public = original_metrics_public
		settings.obs_admin_token = original_admin_token


@pytest.fixture
def store():
	return MemoryStore()


@pytest.fixture
def app(store):
	return build_app(store)


@pytest_asyncio.fixture
async def api_client(app):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


@pytest.fixture
def seed_users(store):
	async def _seed(*user_ids: str) -> None:
		for user_id in user_ids:
			await store.upsert_user(user_id)

	return _seed


@pytest.fixture
def seed_profile(store):
	async def _seed(user_id: str, *, age: int = 25, **fields) -> Profile:
		display_name = fields.pop("display_name", user_id.title())
		return await store.upsert_profile(Profile(user_id=user_id, display_name=display_name, age=age, **fields))

	return _seed
