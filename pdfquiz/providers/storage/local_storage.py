"""Local-filesystem object storage provider.

Objects live under ``Settings.storage_dir``; a key such as
``documents/abc.pdf`` maps to ``<storage_dir>/documents/abc.pdf``.  Blocking
file I/O runs in a worker thread so the event loop never stalls on disk.
Writes go to a temporary sibling first and are renamed into place, so a
crashed upload never leaves a truncated object behind.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import structlog

from pdfquiz.config.settings import Settings
from pdfquiz.interfaces.storage_provider import IStorageProvider
from pdfquiz.utils.errors import StorageError, StorageObjectNotFoundError

logger = structlog.get_logger(logger_name=__name__)


class LocalFileStorageProvider(IStorageProvider):
    """Stores objects as files beneath a root directory."""

    def __init__(self, settings: Settings) -> None:
        self._root = Path(settings.storage_dir).resolve()

    # ------------------------------------------------------------------
    # IStorageProvider implementation
    # ------------------------------------------------------------------

    async def put(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            raise StorageError(
                f"Failed to store {key}: {exc}", provider_name=self.get_provider_name()
            ) from exc
        logger.info("storage_put", key=key, size=len(data), content_type=content_type)
        return path.as_uri()

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise StorageObjectNotFoundError(
                f"No object stored under {key}", provider_name=self.get_provider_name()
            ) from exc
        except OSError as exc:
            raise StorageError(
                f"Failed to read {key}: {exc}", provider_name=self.get_provider_name()
            ) from exc

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path_for(key).is_file)

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise StorageError(
                f"Failed to delete {key}: {exc}", provider_name=self.get_provider_name()
            ) from exc
        logger.info("storage_delete", key=key)

    def get_provider_name(self) -> str:
        return "local_storage"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise StorageError(
                f"Storage key escapes the storage root: {key}",
                provider_name=self.get_provider_name(),
            )
        return path

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
