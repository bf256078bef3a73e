"""FastAPI dependencies resolving the process-owned services from app state."""

from __future__ import annotations

from fastapi import Request

from nearmatch.domain.blocks import BlockService
from nearmatch.domain.chat import DeliveryPipeline
from nearmatch.domain.discovery import DiscoveryService
from nearmatch.domain.matching import MatchEngine
from nearmatch.domain.presence import PresenceRegistry
from nearmatch.domain.store import Store


def get_store(request: Request) -> Store:
	return request.app.state.store


def get_registry(request: Request) -> PresenceRegistry:
	return request.app.state.registry


def get_pipeline(request: Request) -> DeliveryPipeline:
	return request.app.state.pipeline


def get_match_engine(request: Request) -> MatchEngine:
	return request.app.state.match_engine


def get_block_service(request: Request) -> BlockService:
	return request.app.state.block_service


def get_discovery(request: Request) -> DiscoveryService:
	return request.app.state.discovery
