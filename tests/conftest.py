from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from eventroll.media import MB, Blob
from eventroll.store import SortBy, StoreEntry, StoreError, StoreErrorKind, sort_and_page


class FakeStore:
    """
    In-memory store adapter that records calls.

    - ``fail_names``: source file names whose upload raises StoreError
    - ``upload_gate``: when set, uploads wait on it (lets tests observe in-flight state)
    - ``list_gate``: same for listings
    """

    def __init__(self) -> None:
        self.objects: dict[str, tuple[Blob, datetime]] = {}
        self.uploads: list[tuple[str, Blob]] = []
        self.list_calls: list[tuple[str, int, int]] = []
        self.fail_names: set[str] = set()
        self.fail_list = False
        self.upload_gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self._clock = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def add(self, key: str, *, created_at: datetime | None = None) -> None:
        self._clock += timedelta(seconds=1)
        self.objects[key] = (Blob(name=key, data=b"x"), created_at or self._clock)

    async def upload(self, key: str, blob: Blob) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.upload_gate is not None:
                await self.upload_gate.wait()
            else:
                await asyncio.sleep(0)
            self.uploads.append((key, blob))
            if blob.name in self.fail_names:
                raise StoreError(f"simulated failure for {blob.name}", kind=StoreErrorKind.UPLOAD, key=key)
            self.add(key)
        finally:
            self.in_flight -= 1

    def get_public_url(self, key: str) -> str:
        return f"https://cdn.example.test/{key}"

    async def list(self, prefix: str, *, sort_by: SortBy = SortBy(), limit: int, offset: int = 0) -> list[StoreEntry]:
        self.list_calls.append((prefix, limit, offset))
        if self.list_gate is not None:
            await self.list_gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail_list:
            raise StoreError("simulated listing failure", kind=StoreErrorKind.LIST, key=prefix)
        entries = [
            StoreEntry(name=key[len(prefix):], created_at=created)
            for key, (_, created) in self.objects.items()
            if key.startswith(prefix)
        ]
        return sort_and_page(entries, sort_by=sort_by, limit=limit, offset=offset)


def make_blob(name: str = "photo.jpg", size: int = 1 * MB, content_type: str = "image/jpeg") -> Blob:
    return Blob(name=name, data=b"\0" * size, content_type=content_type)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
