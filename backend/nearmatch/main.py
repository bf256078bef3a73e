"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nearmatch.api import blocks, chat, discovery, likes, ops, presence
from nearmatch.api.errors import install_error_handlers
from nearmatch.domain.blocks import BlockService
from nearmatch.domain.chat import DeliveryPipeline
from nearmatch.domain.discovery import DiscoveryService
from nearmatch.domain.matching import MatchEngine
from nearmatch.domain.presence import PresenceRegistry
from nearmatch.domain.realtime import ConnectionLifecycle, RealtimeNamespace
from nearmatch.domain.store import Store, build_store
from nearmatch.obs import init as obs_init
from nearmatch.obs import logging as obs_logging
from nearmatch.obs.tracing import shutdown_tracing
from nearmatch.settings import settings

logger = obs_logging.get_logger(__name__)

SOCKET_PATH = "ws"


def _allowed_origins() -> List[str]:
	allow_origins = list(settings.cors_allow_origins)
	if not allow_origins:
		allow_origins = ["http://localhost:3000", "http://localhost:5173"] if settings.is_dev() else []
	# Starlette disallows wildcard '*' with allow_credentials=True
	return [origin for origin in allow_origins if origin != "*"]


def build_app(store: Optional[Store] = None, *, allow_asserted_identity: Optional[bool] = None) -> FastAPI:
	"""Wire the store, presence registry and services into a FastAPI app.

	Everything the request handlers and socket handlers share lives on
	``app.state``; nothing is held in module globals.
	"""
	store = store if store is not None else build_store(settings)
	registry = PresenceRegistry(store)
	if allow_asserted_identity is None:
		allow_asserted_identity = settings.socket_allow_asserted_identity
	lifecycle = ConnectionLifecycle(registry, allow_asserted_identity=allow_asserted_identity)
	namespace = RealtimeNamespace(lifecycle)

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		await store.ensure_schema()
		if settings.presence_reset_on_startup:
			await registry.reconcile_on_startup()
		sweeper = asyncio.create_task(
			registry.run_offline_sweeper(settings.presence_sweep_seconds), name="presence-offline-sweeper"
		)
		logger.info("startup_complete", extra={"store": type(store).__name__})
		try:
			yield
		finally:
			sweeper.cancel()
			await asyncio.gather(sweeper, return_exceptions=True)
			if registry.pending_offline():
				await registry.flush_pending_offline()
			await store.close()
			shutdown_tracing()

	app = FastAPI(title="nearmatch realtime core", lifespan=lifespan)
	app.state.store = store
	app.state.registry = registry
	app.state.lifecycle = lifecycle
	app.state.realtime = namespace
	app.state.pipeline = DeliveryPipeline(store, registry, namespace)
	app.state.match_engine = MatchEngine(store)
	app.state.block_service = BlockService(store)
	app.state.discovery = DiscoveryService(store)

	install_error_handlers(app)
	allow_origins = _allowed_origins()
	app.add_middleware(
		CORSMiddleware,
		allow_origins=allow_origins,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	obs_init(app)

	sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
	sio.register_namespace(namespace)
	app.state.sio = sio

	app.include_router(chat.router)
	app.include_router(likes.router)
	app.include_router(blocks.router)
	app.include_router(presence.router)
	app.include_router(discovery.router)
	app.include_router(ops.router)
	return app


def build_asgi(app: FastAPI) -> socketio.ASGIApp:
	"""Mount the Socket.IO server at ``/ws`` in front of the HTTP app."""
	return socketio.ASGIApp(app.state.sio, other_asgi_app=app, socketio_path=SOCKET_PATH)


app = build_app()
socket_app = build_asgi(app)
