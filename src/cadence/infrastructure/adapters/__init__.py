# Infrastructure Persistence Adapters Package
from .json_store import JsonFileRepository
from .memory_store import InMemoryRepository

__all__ = ["JsonFileRepository", "InMemoryRepository"]
