from datetime import datetime, timedelta, timezone

import pytest

from nearmatch.domain.discovery import DiscoveryQuery, DiscoveryService, distance_km
from nearmatch.domain.errors import InvalidArgument

NOW = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)

# Montreal downtown and nearby points
HOME = (45.5017, -73.5673)


def test_distance_km_matches_known_values():
	assert distance_km(*HOME, *HOME) == pytest.approx(0.0, abs=1e-6)
	assert distance_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(111.19, rel=1e-3)
	assert distance_km(45.5017, -73.5673, 43.6532, -79.3832) == pytest.approx(504, rel=0.02)


@pytest.mark.asyncio
async def test_nearby_filters_and_orders(store, seed_profile):
	await seed_profile("me", latitude=HOME[0], longitude=HOME[1])
	await seed_profile("online_close", age=30, latitude=45.51, longitude=-73.57)
	await seed_profile("offline_recent", age=28, latitude=45.52, longitude=-73.58)
	await seed_profile("offline_old", age=22, latitude=45.50, longitude=-73.56)
	await seed_profile("too_old", age=70, latitude=45.50, longitude=-73.56)
	await seed_profile("far_away", latitude=43.6532, longitude=-79.3832)
	await seed_profile("hidden", is_visible=False, latitude=45.50, longitude=-73.56)
	await seed_profile("nowhere")
	await store.set_presence("online_close", True, NOW - timedelta(days=3))
	await store.set_presence("offline_recent", False, NOW - timedelta(minutes=5))
	await store.set_presence("offline_old", False, NOW - timedelta(days=10))

	service = DiscoveryService(store)
	results = await service.nearby("me", DiscoveryQuery(latitude=HOME[0], longitude=HOME[1], max_distance_km=25))

	assert [r.profile.user_id for r in results] == ["online_close", "offline_recent", "offline_old"]
	assert all(r.distance_km is not None and r.distance_km < 25 for r in results)


@pytest.mark.asyncio
async def test_nearby_without_location_skips_distance(store, seed_profile):
	await seed_profile("me")
	await seed_profile("far_away", latitude=43.6532, longitude=-79.3832)
	await seed_profile("nowhere")

	results = await DiscoveryService(store).nearby("me", DiscoveryQuery())

	assert {r.profile.user_id for r in results} == {"far_away", "nowhere"}
	assert all(r.distance_km is None for r in results)


@pytest.mark.asyncio
async def test_nearby_hides_blocks_in_both_directions(store, seed_profile):
	for user_id in ("me", "blocked_by_me", "blocked_me", "friend"):
		await seed_profile(user_id)
	await store.record_block("me", "blocked_by_me")
	await store.record_block("blocked_me", "me")

	results = await DiscoveryService(store).nearby("me", DiscoveryQuery())

	assert [r.profile.user_id for r in results] == ["friend"]


@pytest.mark.asyncio
async def test_online_only_and_age_window(store, seed_profile):
	await seed_profile("me")
	await seed_profile("young_online", age=20)
	await seed_profile("old_online", age=40)
	await seed_profile("young_offline", age=21)
	await store.set_presence("young_online", True, NOW)
	await store.set_presence("old_online", True, NOW)

	results = await DiscoveryService(store).nearby("me", DiscoveryQuery(age_min=18, age_max=30, online_only=True))

	assert [r.profile.user_id for r in results] == ["young_online"]


@pytest.mark.parametrize(
	"query",
	[
		DiscoveryQuery(age_min=40, age_max=30),
		DiscoveryQuery(age_min=12),
		DiscoveryQuery(age_max=200),
		DiscoveryQuery(latitude=45.0),
		DiscoveryQuery(latitude=95.0, longitude=0.0),
		DiscoveryQuery(max_distance_km=0),
		DiscoveryQuery(limit=0),
	],
)
@pytest.mark.asyncio
async def test_invalid_filters_are_rejected(store, query):
	with pytest.raises(InvalidArgument):
		await DiscoveryService(store).nearby("me", query)


@pytest.mark.asyncio
async def test_limit_caps_results(store, seed_profile):
	await seed_profile("me")
	for idx in range(5):
		await seed_profile(f"user{idx}")

	results = await DiscoveryService(store).nearby("me", DiscoveryQuery(limit=2))

	assert len(results) == 2


@pytest.mark.asyncio
async def test_filters_are_handed_to_the_store_resolved():
	class CapturingStore:
		def __init__(self) -> None:
			self.criteria = None

		async def nearby_profiles(self, criteria):
			self.criteria = criteria
			return []

		async def list_profiles(self, **_):
			raise AssertionError("discovery must not scan every profile")

	store = CapturingStore()
	await DiscoveryService(store).nearby("me", DiscoveryQuery(latitude=HOME[0], longitude=HOME[1], online_only=True))

	criteria = store.criteria
	assert criteria.viewer_id == "me"
	assert (criteria.age_min, criteria.age_max) == (18, 65)
	assert criteria.max_distance_km == 50.0
	assert criteria.limit == 100
	assert criteria.online_only is True
	assert criteria.has_location
