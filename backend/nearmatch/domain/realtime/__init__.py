from .lifecycle import ConnectionLifecycle, ConnectionSession, ConnectionState
from .sockets import RealtimeNamespace

__all__ = ["ConnectionLifecycle", "ConnectionSession", "ConnectionState", "RealtimeNamespace"]
