from nearmatch.domain.store import distance_km

from .service import DiscoveryQuery, DiscoveryResult, DiscoveryService

__all__ = ["DiscoveryQuery", "DiscoveryResult", "DiscoveryService", "distance_km"]
