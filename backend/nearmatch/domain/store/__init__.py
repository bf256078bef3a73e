"""Persistence layer for messages, likes, blocks, profiles and presence."""

from __future__ import annotations

from nearmatch.settings import Settings

from .base import Store
from .memory import MemoryStore
from .models import Block, Like, Message, NearbyCriteria, Presence, Profile, distance_km, pair_key
from .postgres import PostgresStore


def build_store(config: Settings) -> Store:
	backend = config.store_backend.lower()
	if backend == "memory":
		return MemoryStore()
	if backend == "postgres":
		return PostgresStore()
	raise ValueError(f"unknown store backend: {config.store_backend}")


__all__ = [
	"Block",
	"Like",
	"MemoryStore",
	"Message",
	"NearbyCriteria",
	"PostgresStore",
	"Presence",
	"Profile",
	"Store",
	"build_store",
	"distance_km",
	"pair_key",
]
