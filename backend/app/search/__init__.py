"""Search service interfaces."""

from .service import MessageSearchService

__all__ = ["MessageSearchService"]
