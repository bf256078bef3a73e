from .service import MatchEngine

__all__ = ["MatchEngine"]
