# Infrastructure Package
from .sqlite_repository import SqliteRepository, connect

__all__ = ["SqliteRepository", "connect"]
