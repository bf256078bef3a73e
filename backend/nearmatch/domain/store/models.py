"""Domain records persisted by the store."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional


EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
	"""Great-circle distance using the spherical law of cosines."""
	phi1 = math.radians(lat1)
	phi2 = math.radians(lat2)
	delta = math.radians(lon2 - lon1)
	cosine = math.sin(phi1) * math.sin(phi2) + math.cos(phi1) * math.cos(phi2) * math.cos(delta)
	# rounding can push the cosine just outside [-1, 1]
	cosine = max(-1.0, min(1.0, cosine))
	return EARTH_RADIUS_KM * math.acos(cosine)


def pair_key(user_one: str, user_two: str) -> str:
	"""Order-independent key for a two-party relationship."""
	first, second = sorted((str(user_one), str(user_two)))
	return f"pair:{first}:{second}"


@dataclass(slots=True, frozen=True)
class Message:
	id: int
	sender_id: str
	receiver_id: str
	content: str
	is_read: bool
	created_at: datetime

	@classmethod
	def from_record(cls, record: Mapping) -> "Message":
		return cls(
			id=int(record["id"]),
			sender_id=str(record["sender_id"]),
			receiver_id=str(record["receiver_id"]),
			content=record["content"],
			is_read=bool(record["is_read"]),
			created_at=record["created_at"],
		)

	def is_participant(self, user_id: str) -> bool:
		return user_id in (self.sender_id, self.receiver_id)

	def counterpart(self, user_id: str) -> str:
		"""Return the party opposite ``user_id`` on this message."""
		if user_id == self.sender_id:
			return self.receiver_id
		if user_id == self.receiver_id:
			return self.sender_id
		raise ValueError("user is not a participant")

	def sort_key(self) -> tuple[datetime, int]:
		return (self.created_at, self.id)


@dataclass(slots=True, frozen=True)
class Like:
	id: int
	liker_id: str
	liked_id: str
	created_at: datetime

	@classmethod
	def from_record(cls, record: Mapping) -> "Like":
		return cls(
			id=int(record["id"]),
			liker_id=str(record["liker_id"]),
			liked_id=str(record["liked_id"]),
			created_at=record["created_at"],
		)


@dataclass(slots=True, frozen=True)
class Block:
	id: int
	blocker_id: str
	blocked_id: str
	created_at: datetime

	@classmethod
	def from_record(cls, record: Mapping) -> "Block":
		return cls(
			id=int(record["id"]),
			blocker_id=str(record["blocker_id"]),
			blocked_id=str(record["blocked_id"]),
			created_at=record["created_at"],
		)


@dataclass(slots=True, frozen=True)
class Presence:
	user_id: str
	is_online: bool
	last_seen: Optional[datetime]


@dataclass(slots=True, frozen=True)
class Profile:
	"""Discovery-facing slice of a profile; the profile service owns the rest."""

	user_id: str
	display_name: str
	age: int
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	is_visible: bool = True
	is_online: bool = False
	last_seen: Optional[datetime] = None

	@classmethod
	def from_record(cls, record: Mapping) -> "Profile":
		return cls(
			user_id=str(record["user_id"]),
			display_name=record["display_name"],
			age=int(record["age"]),
			latitude=record["latitude"],
			longitude=record["longitude"],
			is_visible=bool(record["is_visible"]),
			is_online=bool(record["is_online"]),
			last_seen=record["last_seen"],
		)


@dataclass(slots=True, frozen=True)
class NearbyCriteria:
	"""Resolved discovery filters; every bound is already validated."""

	viewer_id: str
	age_min: int
	age_max: int
	max_distance_km: float
	limit: int
	online_only: bool = False
	latitude: Optional[float] = None
	longitude: Optional[float] = None

	@property
	def has_location(self) -> bool:
		return self.latitude is not None and self.longitude is not None
