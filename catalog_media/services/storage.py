"""
Хранилище байтов вариантов (blob storage).

Ключи контентно-адресуемые: повторная запись того же ключа ничего не меняет.
Блокирующий файловый I/O уходит в поток, временные ошибки повторяются
с экспоненциальной задержкой.
"""

import asyncio
import errno
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from catalog_media.core.config import settings
from catalog_media.core.exceptions import StorageIOError, is_transient_storage_error

logger = logging.getLogger("blob_storage")

TRANSIENT_ERRNOS = frozenset({errno.EAGAIN, errno.EBUSY, errno.EINTR, errno.EIO, errno.ETIMEDOUT})


def _to_storage_error(exc: OSError, action: str, key: str) -> StorageIOError:
    transient = exc.errno in TRANSIENT_ERRNOS
    return StorageIOError(f"Storage {action} failed for {key}: {exc}", transient=transient)


class BlobStorage(ABC):

    def __init__(
        self,
        *,
        retry_attempts: Optional[int] = None,
        retry_max_wait: Optional[float] = None,
        retry_multiplier: float = 0.5,
    ):
        self.retry_attempts = retry_attempts or settings.STORAGE_RETRY_ATTEMPTS
        self.retry_max_wait = settings.STORAGE_RETRY_MAX_WAIT if retry_max_wait is None else retry_max_wait
        self.retry_multiplier = retry_multiplier

    # --- синхронные операции бэкенда ---

    @abstractmethod
    def _write(self, key: str, data: bytes) -> bool:
        """Записать ключ, если его нет. True - если файл создан сейчас."""

    @abstractmethod
    def _read(self, key: str) -> bytes: ...

    @abstractmethod
    def _remove(self, key: str) -> bool: ...

    @abstractmethod
    def _exists(self, key: str) -> bool: ...

    @abstractmethod
    def url_for(self, key: str) -> str: ...

    # --- асинхронный API с повторами ---

    async def _call(self, func, *args):
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_multiplier, max=self.retry_max_wait),
            retry=retry_if_exception(is_transient_storage_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                result = await asyncio.to_thread(func, *args)
        return result

    async def put(self, key: str, data: bytes) -> bool:
        return await self._call(self._write, key, data)

    async def get(self, key: str) -> bytes:
        return await self._call(self._read, key)

    async def delete(self, key: str) -> bool:
        return await self._call(self._remove, key)

    async def exists(self, key: str) -> bool:
        return await self._call(self._exists, key)


class LocalBlobStorage(BlobStorage):
    """Файлы под MEDIA_ROOT, отдаются nginx по MEDIA_URL."""

    def __init__(self, root: Optional[Path] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.root = Path(root or settings.MEDIA_ROOT)
        self.base_url = base_url or settings.MEDIA_URL
        if not self.base_url.endswith("/"):
            self.base_url += "/"

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageIOError(f"Blob key escapes storage root: {key}", transient=False)
        return path

    def url_for(self, key: str) -> str:
        return f"{self.base_url}{key}"

    def _write(self, key: str, data: bytes) -> bool:
        path = self._path(key)
        if path.exists():
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise _to_storage_error(e, "write", key) from e
        return True

    def _read(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise _to_storage_error(e, "read", key) from e

    def _remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise _to_storage_error(e, "delete", key) from e
        return True

    def _exists(self, key: str) -> bool:
        return self._path(key).exists()

    def get_disk_usage(self) -> dict:
        total_size = 0
        total_files = 0

        if self.root.exists():
            for f in self.root.rglob("*"):
                if f.is_file() and not f.name.startswith(".tmp-"):
                    total_files += 1
                    total_size += f.stat().st_size

        return {
            "total_size_mb": round(total_size / (1024 * 1024), 1),
            "total_files": total_files,
        }
