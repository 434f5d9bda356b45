import asyncio
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """Per-key asyncio mutex registry.

    A lock exists only while somebody holds or waits for it, so the registry
    does not grow with the number of distinct keys ever seen.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)


# Общий реестр процесса. Порядок захвата: dedup -> blob -> image_index -> primary
pipeline_locks = KeyedLock()

CAROUSEL_KEY = ("carousel",)


def dedup_key(product_id: int, content_hash: str) -> tuple:
    return ("dedup", product_id, content_hash)


def image_index_key(product_id: int) -> tuple:
    return ("image_index", product_id)


def primary_key(product_id: int) -> tuple:
    return ("primary", product_id)


def blob_lock_key(content_hash: str) -> tuple:
    """Запись вариантов по хэшу и сборка мусора их файлов."""
    return ("blob", content_hash)
