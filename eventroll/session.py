from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .gallery import GallerySynchronizer
from .logging_utils import get_logger
from .media import Blob
from .preview import PreviewStore
from .store import StoreAdapter
from .uploader import MAX_UPLOAD_BYTES, Rejection, TaskStatus, UploadCoordinator, UploadTask


@dataclass
class UploadReport:
    accepted: list[UploadTask] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)

    @property
    def failed(self) -> list[UploadTask]:
        return [t for t in self.accepted if t.status is TaskStatus.ERROR]

    @property
    def ok(self) -> bool:
        return not self.rejected and not self.failed


def validate_event_id(event_id: str) -> str:
    if not event_id or "/" in event_id or "\\" in event_id:
        raise ValueError(f"Invalid event id {event_id!r} (must be non-empty, without path separators)")
    return event_id


class EventSession:
    """
    Wires one store adapter into an uploader and a gallery for a single event.

    The uploader never talks to the gallery directly: ``upload()`` forwards its
    completion signal through the gallery's refresh handle.
    """

    def __init__(
        self,
        store: StoreAdapter,
        event_id: str,
        *,
        preview_root: Path | None = None,
        logger: logging.Logger | None = None,
        store_max_object_bytes: int | None = None,
    ) -> None:
        self.event_id = validate_event_id(event_id)
        self.store = store
        self.logger = logger or get_logger()
        self.uploader = UploadCoordinator(
            store,
            event_id,
            previews=PreviewStore(preview_root),
            logger=self.logger,
            compress_ceiling=store_max_object_bytes or MAX_UPLOAD_BYTES,
        )
        self.gallery = GallerySynchronizer(store, event_id, logger=self.logger)
        self._refresh = self.gallery.refresh_handle()

    async def upload(self, files: Iterable[Blob]) -> UploadReport:
        accepted, rejected = self.uploader.select_files(files)
        report = UploadReport(accepted=accepted, rejected=rejected)
        report.urls = await self.uploader.process_pending()
        if report.urls:
            await self._refresh()
        return report

    async def upload_paths(self, paths: Iterable[Path]) -> UploadReport:
        return await self.upload(Blob.from_path(Path(p)) for p in paths)

    def close(self) -> None:
        self.uploader.close()

    def __enter__(self) -> "EventSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
