"""Database layer for conti."""

from conti.database.base import Store
from conti.database.factories import create_repository, create_sqlite_store, create_store

__all__ = ["Store", "create_repository", "create_sqlite_store", "create_store"]
