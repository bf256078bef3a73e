"""Realtime messaging, presence and matching core."""
