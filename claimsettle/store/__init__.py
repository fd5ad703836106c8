"""
Persistence stores.
"""
from .base import Store, TableStore
from .memory import MemoryStore
from .json_file import JsonFileStore

__all__ = ["Store", "TableStore", "MemoryStore", "JsonFileStore"]
