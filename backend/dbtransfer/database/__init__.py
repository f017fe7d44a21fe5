"""Task store database package."""

from dbtransfer.database.base import Base
from dbtransfer.database.session import create_store_engine, get_session, init_store

__all__ = ["Base", "create_store_engine", "get_session", "init_store"]
