"""
Persistence layer: SQLAlchemy models for the inventory system.

All models are re-exported from db.database; import them from there.
"""

from . import database  # noqa: F401
