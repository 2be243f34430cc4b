"""
Database-related dependencies.

Re-exports the session dependency so every layer resolves the same
request-scoped session (and tests override a single callable).
"""

from ...database import get_db

__all__ = ["get_db"]
