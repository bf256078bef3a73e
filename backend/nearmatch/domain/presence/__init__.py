from .registry import ConnectionHandle, PresenceRegistry

__all__ = ["ConnectionHandle", "PresenceRegistry"]
