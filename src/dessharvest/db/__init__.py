"""Database module for DESS Harvest."""

from dessharvest.db.base import Base, TimestampMixin
from dessharvest.db.engine import create_engine, create_tables, get_session

__all__ = ["Base", "TimestampMixin", "create_engine", "create_tables", "get_session"]
