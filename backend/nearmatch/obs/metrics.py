"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"nearmatch_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"nearmatch_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"nearmatch_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"nearmatch_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

SOCKET_FRAMES_REJECTED = Counter(
	"nearmatch_socket_frames_rejected_total",
	"Inbound frames ignored by the connection lifecycle",
	["reason"],
)

PRESENCE_TRANSITIONS = Counter(
	"nearmatch_presence_transitions_total",
	"Presence online/offline transitions persisted",
	["state"],
)

PRESENCE_ONLINE = Gauge(
	"nearmatch_presence_online_users",
	"Users with at least one live connection",
)

CHAT_SEND = Counter(
	"nearmatch_chat_send_total",
	"Chat messages persisted",
)

CHAT_READ_UPDATES = Counter(
	"nearmatch_chat_read_total",
	"Chat read receipts applied",
)

CHAT_PUSH = Counter(
	"nearmatch_chat_push_total",
	"Chat message pushes to live connections",
	["result"],
)

LIKES_TOTAL = Counter(
	"nearmatch_likes_total",
	"Like edges recorded or removed",
	["action"],
)

MATCHES_TOTAL = Counter(
	"nearmatch_matches_total",
	"Likes that completed a mutual pair",
)

BLOCKS_TOTAL = Counter(
	"nearmatch_blocks_total",
	"Block edges recorded or removed",
	["action"],
)

DISCOVERY_QUERIES = Counter(
	"nearmatch_discovery_queries_total",
	"Discovery feed queries served",
)

RATE_LIMITED_EVENTS = Counter(
	"nearmatch_rate_limited_total",
	"Requests rejected by rate limiting",
	["kind"],
)

IDEMPOTENCY_EVENTS = Counter(
	"nearmatch_idempotency_total",
	"Idempotency key outcomes",
	["outcome"],
)

REDIS_UP = Gauge("nearmatch_redis_up", "Redis availability (1=up,0=down)")
STORE_UP = Gauge("nearmatch_store_up", "Store availability (1=up,0=down)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def socket_frame_rejected(reason: str) -> None:
	SOCKET_FRAMES_REJECTED.labels(reason=reason).inc()


def presence_transition(online: bool) -> None:
	PRESENCE_TRANSITIONS.labels(state="online" if online else "offline").inc()


def set_presence_online(count: int) -> None:
	PRESENCE_ONLINE.set(float(count))


def inc_chat_send() -> None:
	CHAT_SEND.inc()


def inc_chat_read() -> None:
	CHAT_READ_UPDATES.inc()


def chat_push(result: str) -> None:
	CHAT_PUSH.labels(result=result).inc()


def inc_like(action: str) -> None:
	LIKES_TOTAL.labels(action=action).inc()


def inc_match() -> None:
	MATCHES_TOTAL.inc()


def inc_block(action: str) -> None:
	BLOCKS_TOTAL.labels(action=action).inc()


def inc_discovery() -> None:
	DISCOVERY_QUERIES.inc()


def rate_limited(kind: str) -> None:
	RATE_LIMITED_EVENTS.labels(kind=kind).inc()


def idempotency(outcome: str) -> None:
	IDEMPOTENCY_EVENTS.labels(outcome=outcome).inc()


def mark_redis(up: bool) -> None:
	REDIS_UP.set(1.0 if up else 0.0)


def mark_store(up: bool) -> None:
	STORE_UP.set(1.0 if up else 0.0)
