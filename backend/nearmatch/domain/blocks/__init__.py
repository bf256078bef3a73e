from .service import BlockService

__all__ = ["BlockService"]
