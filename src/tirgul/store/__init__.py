from .base import Store
from .memory import MemoryStore
from .redis_store import RedisStore


def create_store(backend: str) -> Store:
    if backend == "redis":
        return RedisStore()
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = ["Store", "MemoryStore", "RedisStore", "create_store"]
