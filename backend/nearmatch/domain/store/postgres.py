"""asyncpg-backed store."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List, Optional, Set, Tuple

import asyncpg

from nearmatch.domain.errors import Forbidden, NotFound
from nearmatch.infra.postgres import close_pool, get_pool

from .models import EARTH_RADIUS_KM, Block, Like, Message, NearbyCriteria, Presence, Profile

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
	id TEXT PRIMARY KEY,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS profiles (
	user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
	display_name TEXT NOT NULL,
	age INTEGER NOT NULL,
	latitude DOUBLE PRECISION,
	longitude DOUBLE PRECISION,
	is_visible BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS presence (
	user_id TEXT PRIMARY KEY,
	is_online BOOLEAN NOT NULL DEFAULT FALSE,
	last_seen TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS messages (
	id BIGSERIAL PRIMARY KEY,
	sender_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
	receiver_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
	content TEXT NOT NULL,
	is_read BOOLEAN NOT NULL DEFAULT FALSE,
	created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);
CREATE INDEX IF NOT EXISTS messages_sender_idx ON messages (sender_id, created_at, id);
CREATE INDEX IF NOT EXISTS messages_receiver_idx ON messages (receiver_id, created_at, id);

CREATE TABLE IF NOT EXISTS likes (
	id BIGSERIAL PRIMARY KEY,
	liker_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
	liked_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
	UNIQUE (liker_id, liked_id)
);
CREATE INDEX IF NOT EXISTS likes_liked_idx ON likes (liked_id);

CREATE TABLE IF NOT EXISTS blocks (
	id BIGSERIAL PRIMARY KEY,
	blocker_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
	blocked_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
	UNIQUE (blocker_id, blocked_id)
);
CREATE INDEX IF NOT EXISTS blocks_blocked_idx ON blocks (blocked_id);
"""

_PROFILE_SELECT = """
SELECT p.user_id, p.display_name, p.age, p.latitude, p.longitude, p.is_visible,
	COALESCE(pr.is_online, FALSE) AS is_online, pr.last_seen
FROM profiles p
LEFT JOIN presence pr ON pr.user_id = p.user_id
"""


# $5/$6 are the viewer's coordinates; when absent no distance is computed or filtered
_NEARBY_SQL = """
SELECT * FROM (
	SELECT p.user_id, p.display_name, p.age, p.latitude, p.longitude, p.is_visible,
		COALESCE(pr.is_online, FALSE) AS is_online, pr.last_seen,
		CASE WHEN $5::double precision IS NULL THEN NULL ELSE
			$7::double precision * acos(LEAST(1.0, GREATEST(-1.0,
				cos(radians($5)) * cos(radians(p.latitude)) * cos(radians(p.longitude) - radians($6::double precision)) +
				sin(radians($5)) * sin(radians(p.latitude))
			)))
		END AS distance_km
	FROM profiles p
	LEFT JOIN presence pr ON pr.user_id = p.user_id
	WHERE p.user_id <> $1
		AND p.is_visible
		AND p.age BETWEEN $2 AND $3
		AND (NOT $4::boolean OR COALESCE(pr.is_online, FALSE))
		AND ($5::double precision IS NULL OR (p.latitude IS NOT NULL AND p.longitude IS NOT NULL))
		AND NOT EXISTS (
			SELECT 1 FROM blocks b
			WHERE (b.blocker_id = $1 AND b.blocked_id = p.user_id)
				OR (b.blocker_id = p.user_id AND b.blocked_id = $1)
		)
) candidates
WHERE distance_km IS NULL OR distance_km <= $8
ORDER BY is_online DESC, last_seen DESC NULLS LAST, user_id
LIMIT $9
"""


def _nearby_args(criteria: NearbyCriteria) -> tuple:
	latitude = criteria.latitude if criteria.has_location else None
	longitude = criteria.longitude if criteria.has_location else None
	return (
		criteria.viewer_id,
		criteria.age_min,
		criteria.age_max,
		criteria.online_only,
		latitude,
		longitude,
		EARTH_RADIUS_KM,
		criteria.max_distance_km,
		criteria.limit,
	)


def _affected(status: str) -> int:
	# asyncpg returns command tags such as "UPDATE 3" or "DELETE 1"
	try:
		return int(status.split()[-1])
	except (ValueError, IndexError):
		return 0


class PostgresStore:
	"""Store backed by a PostgreSQL connection pool.

	Instances created by :meth:`transaction` are bound to one connection and run
	every call inside that connection's open transaction.
	"""

	def __init__(self, pool: Optional[asyncpg.pool.Pool] = None, *, conn: Optional[asyncpg.Connection] = None) -> None:
		self._pool = pool
		self._conn = conn

	async def _get_pool(self) -> asyncpg.pool.Pool:
		if self._pool is None:
			self._pool = await get_pool()
		return self._pool

	@asynccontextmanager
	async def _acquire(self) -> AsyncIterator[asyncpg.Connection]:
		if self._conn is not None:
			yield self._conn
			return
		pool = await self._get_pool()
		async with pool.acquire() as conn:
			yield conn

	async def ensure_schema(self) -> None:
		async with self._acquire() as conn:
			await conn.execute(SCHEMA_SQL)

	async def ping(self) -> bool:
		async with self._acquire() as conn:
			return await conn.fetchval("SELECT 1") == 1

	async def close(self) -> None:
		if self._conn is not None:
			return
		if self._pool is not None:
			await self._pool.close()
			self._pool = None
		await close_pool()

	@asynccontextmanager
	async def transaction(self, *, lock_key: Optional[str] = None) -> AsyncIterator["PostgresStore"]:
		async with self._acquire() as conn:
			async with conn.transaction():
				if lock_key is not None:
					await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", lock_key)
				yield PostgresStore(self._pool, conn=conn)

	async def upsert_user(self, user_id: str) -> None:
		async with self._acquire() as conn:
			await conn.execute("INSERT INTO users (id) VALUES ($1) ON CONFLICT (id) DO NOTHING", str(user_id))

	async def upsert_profile(self, profile: Profile) -> Profile:
		async with self._acquire() as conn:
			async with conn.transaction():
				await conn.execute("INSERT INTO users (id) VALUES ($1) ON CONFLICT (id) DO NOTHING", profile.user_id)
				await conn.execute(
					"""
					INSERT INTO profiles (user_id, display_name, age, latitude, longitude, is_visible)
					VALUES ($1, $2, $3, $4, $5, $6)
					ON CONFLICT (user_id) DO UPDATE
					SET display_name = EXCLUDED.display_name,
						age = EXCLUDED.age,
						latitude = EXCLUDED.latitude,
						longitude = EXCLUDED.longitude,
						is_visible = EXCLUDED.is_visible
					""",
					profile.user_id,
					profile.display_name,
					profile.age,
					profile.latitude,
					profile.longitude,
					profile.is_visible,
				)
				row = await conn.fetchrow(_PROFILE_SELECT + " WHERE p.user_id = $1", profile.user_id)
		return Profile.from_record(row)

	async def get_profile(self, user_id: str) -> Optional[Profile]:
		async with self._acquire() as conn:
			row = await conn.fetchrow(_PROFILE_SELECT + " WHERE p.user_id = $1", user_id)
		return Profile.from_record(row) if row else None

	async def list_profiles(self, *, exclude_ids: Iterable[str] = ()) -> List[Profile]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				_PROFILE_SELECT + " WHERE NOT (p.user_id = ANY($1::text[]))",
				list(exclude_ids),
			)
		return [Profile.from_record(row) for row in rows]

	async def nearby_profiles(self, criteria: NearbyCriteria) -> List[Tuple[Profile, Optional[float]]]:
		async with self._acquire() as conn:
			rows = await conn.fetch(_NEARBY_SQL, *_nearby_args(criteria))
		return [(Profile.from_record(row), row["distance_km"]) for row in rows]

	async def users_exist(self, *user_ids: str) -> bool:
		wanted = set(user_ids)
		if not wanted:
			return True
		async with self._acquire() as conn:
			count = await conn.fetchval("SELECT COUNT(*) FROM users WHERE id = ANY($1::text[])", list(wanted))
		return int(count) == len(wanted)

	async def record_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
		async with self._acquire() as conn:
			try:
				row = await conn.fetchrow(
					"""
					INSERT INTO messages (sender_id, receiver_id, content)
					VALUES ($1, $2, $3)
					RETURNING id, sender_id, receiver_id, content, is_read, created_at
					""",
					sender_id,
					receiver_id,
					content,
				)
			except asyncpg.ForeignKeyViolationError:
				raise NotFound("user_missing") from None
		return Message.from_record(row)

	async def get_message(self, message_id: int) -> Optional[Message]:
		async with self._acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM messages WHERE id = $1", message_id)
		return Message.from_record(row) if row else None

	async def conversation_between(self, user_a: str, user_b: str) -> List[Message]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM messages
				WHERE (sender_id = $1 AND receiver_id = $2)
					OR (sender_id = $2 AND receiver_id = $1)
				ORDER BY created_at ASC, id ASC
				""",
				user_a,
				user_b,
			)
		return [Message.from_record(row) for row in rows]

	async def latest_message_per_counterpart(self, user_id: str) -> List[Message]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT id, sender_id, receiver_id, content, is_read, created_at FROM (
					SELECT DISTINCT ON (counterpart_id) m.*,
						CASE WHEN m.sender_id = $1 THEN m.receiver_id ELSE m.sender_id END AS counterpart_id
					FROM messages m
					WHERE m.sender_id = $1 OR m.receiver_id = $1
					ORDER BY counterpart_id, m.created_at DESC, m.id DESC
				) latest
				ORDER BY created_at DESC, id DESC
				""",
				user_id,
			)
		return [Message.from_record(row) for row in rows]

	async def mark_read(self, message_id: int, reader_id: str) -> Message:
		async with self._acquire() as conn:
			row = await conn.fetchrow(
				"UPDATE messages SET is_read = TRUE WHERE id = $1 AND receiver_id = $2 RETURNING *",
				message_id,
				reader_id,
			)
			if row is None:
				existing = await conn.fetchrow("SELECT receiver_id FROM messages WHERE id = $1", message_id)
				if existing is None:
					raise NotFound("message_not_found")
				raise Forbidden("not_receiver")
		return Message.from_record(row)

	async def record_like(self, liker_id: str, liked_id: str) -> Like:
		async with self._acquire() as conn:
			try:
				row = await conn.fetchrow(
					"""
					INSERT INTO likes (liker_id, liked_id) VALUES ($1, $2)
					ON CONFLICT (liker_id, liked_id) DO NOTHING
					RETURNING *
					""",
					liker_id,
					liked_id,
				)
			except asyncpg.ForeignKeyViolationError:
				raise NotFound("user_missing") from None
			if row is None:
				row = await conn.fetchrow(
					"SELECT * FROM likes WHERE liker_id = $1 AND liked_id = $2",
					liker_id,
					liked_id,
				)
		return Like.from_record(row)

	async def like_exists(self, liker_id: str, liked_id: str) -> bool:
		async with self._acquire() as conn:
			found = await conn.fetchval(
				"SELECT EXISTS (SELECT 1 FROM likes WHERE liker_id = $1 AND liked_id = $2)",
				liker_id,
				liked_id,
			)
		return bool(found)

	async def remove_like(self, liker_id: str, liked_id: str) -> bool:
		async with self._acquire() as conn:
			status = await conn.execute("DELETE FROM likes WHERE liker_id = $1 AND liked_id = $2", liker_id, liked_id)
		return _affected(status) > 0

	async def likes_received(self, user_id: str) -> List[Like]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM likes WHERE liked_id = $1 ORDER BY created_at DESC, id DESC",
				user_id,
			)
		return [Like.from_record(row) for row in rows]

	async def mutual_partners(self, user_id: str) -> Set[str]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT l1.liked_id AS partner_id
				FROM likes l1
				JOIN likes l2 ON l2.liker_id = l1.liked_id AND l2.liked_id = l1.liker_id
				WHERE l1.liker_id = $1
				""",
				user_id,
			)
		return {str(row["partner_id"]) for row in rows}

	async def record_block(self, blocker_id: str, blocked_id: str) -> Block:
		async with self._acquire() as conn:
			try:
				row = await conn.fetchrow(
					"""
					INSERT INTO blocks (blocker_id, blocked_id) VALUES ($1, $2)
					ON CONFLICT (blocker_id, blocked_id) DO NOTHING
					RETURNING *
					""",
					blocker_id,
					blocked_id,
				)
			except asyncpg.ForeignKeyViolationError:
				raise NotFound("user_missing") from None
			if row is None:
				row = await conn.fetchrow(
					"SELECT * FROM blocks WHERE blocker_id = $1 AND blocked_id = $2",
					blocker_id,
					blocked_id,
				)
		return Block.from_record(row)

	async def remove_block(self, blocker_id: str, blocked_id: str) -> bool:
		async with self._acquire() as conn:
			status = await conn.execute(
				"DELETE FROM blocks WHERE blocker_id = $1 AND blocked_id = $2",
				blocker_id,
				blocked_id,
			)
		return _affected(status) > 0

	async def blocks_by(self, user_id: str) -> List[Block]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM blocks WHERE blocker_id = $1 ORDER BY created_at DESC, id DESC",
				user_id,
			)
		return [Block.from_record(row) for row in rows]

	async def is_blocked_either_way(self, user_a: str, user_b: str) -> bool:
		async with self._acquire() as conn:
			found = await conn.fetchval(
				"""
				SELECT EXISTS (
					SELECT 1 FROM blocks
					WHERE (blocker_id = $1 AND blocked_id = $2)
						OR (blocker_id = $2 AND blocked_id = $1)
				)
				""",
				user_a,
				user_b,
			)
		return bool(found)

	async def blocked_ids(self, user_id: str) -> Set[str]:
		async with self._acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT blocked_id AS other_id FROM blocks WHERE blocker_id = $1
				UNION
				SELECT blocker_id AS other_id FROM blocks WHERE blocked_id = $1
				""",
				user_id,
			)
		return {str(row["other_id"]) for row in rows}

	async def set_presence(self, user_id: str, is_online: bool, at: datetime) -> None:
		async with self._acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO presence (user_id, is_online, last_seen) VALUES ($1, $2, $3)
				ON CONFLICT (user_id) DO UPDATE
				SET is_online = EXCLUDED.is_online, last_seen = EXCLUDED.last_seen
				""",
				user_id,
				is_online,
				at,
			)

	async def get_presence(self, user_id: str) -> Presence:
		async with self._acquire() as conn:
			row = await conn.fetchrow("SELECT is_online, last_seen FROM presence WHERE user_id = $1", user_id)
		if row is None:
			return Presence(user_id=user_id, is_online=False, last_seen=None)
		return Presence(user_id=user_id, is_online=bool(row["is_online"]), last_seen=row["last_seen"])

	async def reset_presence(self, at: datetime) -> int:
		async with self._acquire() as conn:
			status = await conn.execute(
				"UPDATE presence SET is_online = FALSE, last_seen = $1 WHERE is_online",
				at,
			)
		return _affected(status)
