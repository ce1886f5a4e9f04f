"""Storage providers module."""

from .database_storage import DatabaseStorage
from .memory_storage import MemoryStorage

__all__ = ["MemoryStorage", "DatabaseStorage"]
