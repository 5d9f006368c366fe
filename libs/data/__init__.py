"""Database helpers, SQLAlchemy models, and repository utilities."""

from .database import get_async_session

__all__ = ["get_async_session"]
