"""
Store adapter boundary.

Both the upload coordinator and the gallery synchronizer talk to the backing
object store only through ``StoreAdapter``. Implementations are constructed by
the caller and injected; nothing here keeps a module-level client.
"""

from __future__ import annotations

import asyncio
import enum
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .media import Blob, format_size


class StoreErrorKind(str, enum.Enum):
    UPLOAD = "upload"
    SIZE_LIMIT = "size_limit"
    LIST = "list"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    NETWORK = "network"


class StoreError(RuntimeError):
    def __init__(self, message: str, *, kind: StoreErrorKind, key: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.key = key


@dataclass(frozen=True)
class StoreEntry:
    name: str
    created_at: datetime


@dataclass(frozen=True)
class SortBy:
    field: str = "created_at"
    order: str = "desc"

    @property
    def descending(self) -> bool:
        return self.order == "desc"


class StoreAdapter(Protocol):
    async def upload(self, key: str, blob: Blob) -> None: ...

    def get_public_url(self, key: str) -> str: ...

    async def list(
        self,
        prefix: str,
        *,
        sort_by: SortBy = SortBy(),
        limit: int,
        offset: int = 0,
    ) -> list[StoreEntry]: ...


def sort_and_page(entries: list[StoreEntry], *, sort_by: SortBy, limit: int, offset: int) -> list[StoreEntry]:
    """Order entries by creation time (name breaks ties) and slice one page."""
    if sort_by.field != "created_at":
        raise ValueError(f"Unsupported sort field: {sort_by.field}")
    ordered = sorted(entries, key=lambda e: (e.created_at, e.name), reverse=sort_by.descending)
    return ordered[offset : offset + limit]


def check_object_size(key: str, blob: Blob, max_object_bytes: int | None) -> None:
    if max_object_bytes is not None and blob.size > max_object_bytes:
        raise StoreError(
            f"Object too large for store: {key} is {format_size(blob.size)} "
            f"(store limit {format_size(max_object_bytes)})",
            kind=StoreErrorKind.SIZE_LIMIT,
            key=key,
        )


def _prefix_dir(prefix: str) -> str:
    return prefix.strip("/")


class LocalStore:
    """Filesystem-backed store: objects live at ``root/<key>``."""

    def __init__(
        self,
        root: Path,
        *,
        public_base_url: str | None = None,
        max_object_bytes: int | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.max_object_bytes = max_object_bytes

    def _path_for(self, key: str) -> Path:
        normalized = key.lstrip("/")
        path = (self.root / normalized).resolve()
        if path != self.root and self.root not in path.parents:
            raise StoreError(f"Refusing to use unsafe key: {key}", kind=StoreErrorKind.UPLOAD, key=key)
        return path

    async def upload(self, key: str, blob: Blob) -> None:
        check_object_size(key, blob, self.max_object_bytes)
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, path, blob.data)
        except OSError as e:
            raise StoreError(
                f"Failed to write {key} to {self.root}\n"
                f"  Try: Check write permissions and free space for {path.parent}\n"
                f"  Original error: {e}",
                kind=StoreErrorKind.UPLOAD,
                key=key,
            ) from e

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    def get_public_url(self, key: str) -> str:
        normalized = key.lstrip("/")
        if self.public_base_url:
            return f"{self.public_base_url}/{normalized}"
        return self._path_for(normalized).as_uri()

    async def list(
        self,
        prefix: str,
        *,
        sort_by: SortBy = SortBy(),
        limit: int,
        offset: int = 0,
    ) -> list[StoreEntry]:
        folder = self.root / _prefix_dir(prefix)
        try:
            entries = await asyncio.to_thread(self._scan, folder)
        except OSError as e:
            raise StoreError(
                f"Failed to list {prefix} under {self.root}: {e}",
                kind=StoreErrorKind.LIST,
                key=prefix,
            ) from e
        return sort_and_page(entries, sort_by=sort_by, limit=limit, offset=offset)

    @staticmethod
    def _scan(folder: Path) -> list[StoreEntry]:
        if not folder.is_dir():
            return []
        entries: list[StoreEntry] = []
        with os.scandir(folder) as it:
            for de in it:
                if not de.is_file() or de.name.endswith(".tmp"):
                    continue
                mtime = de.stat().st_mtime
                entries.append(StoreEntry(name=de.name, created_at=datetime.fromtimestamp(mtime, tz=timezone.utc)))
        return entries
