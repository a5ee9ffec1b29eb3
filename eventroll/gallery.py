from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from .logging_utils import get_logger
from .singleflight import ConcurrencyBusy, SingleFlight
from .store import SortBy, StoreAdapter

PAGE_SIZE = 10
LOADING_DELAY_SECONDS = 0.3


@dataclass(frozen=True)
class PhotoObject:
    public_url: str
    display_label: str
    created_at: datetime


PhotoSnapshot = tuple[PhotoObject, ...]
PhotoListener = Callable[[PhotoSnapshot], None]
LoadingListener = Callable[[bool], None]


class RefreshHandle:
    """Capability to trigger one gallery refresh, handed to whoever composes the uploader."""

    def __init__(self, synchronizer: "GallerySynchronizer") -> None:
        self._synchronizer = synchronizer

    async def __call__(self) -> None:
        await self._synchronizer.refresh()


class GallerySynchronizer:
    """
    Keeps the rendered photo set for one event in step with the store.

    ``refresh()`` re-lists the event newest-first, one page at a time, and
    publishes the accumulated set after every page so the renderer can show
    photos before the listing finishes.
    """

    def __init__(
        self,
        store: StoreAdapter,
        event_id: str,
        *,
        logger: logging.Logger | None = None,
        page_size: int = PAGE_SIZE,
        loading_delay: float = LOADING_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.event_id = event_id
        self.logger = logger or get_logger()
        self.page_size = page_size
        self.loading_delay = loading_delay
        self._photos: PhotoSnapshot = ()
        self._loading = False
        self._listeners: list[PhotoListener] = []
        self._loading_listeners: list[LoadingListener] = []
        self._flight = SingleFlight("refresh")

    @property
    def prefix(self) -> str:
        return f"{self.event_id}/"

    @property
    def photos(self) -> PhotoSnapshot:
        return self._photos

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def busy(self) -> bool:
        return self._flight.busy

    def subscribe(self, listener: PhotoListener) -> None:
        self._listeners.append(listener)

    def subscribe_loading(self, listener: LoadingListener) -> None:
        self._loading_listeners.append(listener)

    def refresh_handle(self) -> RefreshHandle:
        return RefreshHandle(self)

    def _publish(self, photos: PhotoSnapshot) -> None:
        for listener in self._listeners:
            listener(photos)

    def _set_loading(self, value: bool) -> None:
        if self._loading == value:
            return
        self._loading = value
        for listener in self._loading_listeners:
            listener(value)

    async def refresh(self) -> None:
        try:
            with self._flight.hold():
                loop = asyncio.get_running_loop()
                timer = loop.call_later(self.loading_delay, self._set_loading, True)
                try:
                    await self._relist()
                finally:
                    timer.cancel()
                    self._set_loading(False)
        except ConcurrencyBusy:
            self.logger.debug(f"Gallery refresh already running for {self.event_id}; dropping call")

    async def _relist(self) -> None:
        photos: list[PhotoObject] = []
        published = False
        offset = 0
        try:
            while True:
                page = await self.store.list(
                    self.prefix,
                    sort_by=SortBy("created_at", "desc"),
                    limit=self.page_size,
                    offset=offset,
                )
                for entry in page:
                    photos.append(
                        PhotoObject(
                            public_url=self.store.get_public_url(self.prefix + entry.name),
                            display_label=f"Event photo {entry.name}",
                            created_at=entry.created_at,
                        )
                    )
                if page:
                    self._publish(tuple(photos))
                    published = True
                if len(page) < self.page_size:
                    break
                offset += len(page)
                await asyncio.sleep(0)
        except Exception as e:  # noqa: BLE001 - a failed listing keeps the previous gallery
            self.logger.error(f"Gallery refresh failed for {self.event_id}: {e}")
            if published:
                self._publish(self._photos)
            return

        self._photos = tuple(photos)
        if not published:
            self._publish(self._photos)
        self.logger.debug(f"Gallery refreshed for {self.event_id}: {len(self._photos)} photos")


def build_gallery_html(*, event_id: str, photos: PhotoSnapshot, out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    count = len(photos)
    tmp = out_path.with_suffix(out_path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write("<!doctype html>\n")
        f.write(
            "<html><head><meta charset=\"utf-8\">"
            "<meta name=\"viewport\" content=\"width=device-width,initial-scale=1\">"
            f"<title>{html.escape(event_id)}</title>\n"
        )
        f.write(
            "<style>"
            "body{margin:0;font-family:ui-sans-serif,system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial}"
            ".wrap{max-width:1100px;margin:0 auto;padding:18px}"
            ".top{display:flex;align-items:baseline;justify-content:space-between;margin-bottom:14px}"
            ".meta{color:#5b6472;font-size:13px}"
            ".grid{display:grid;grid-template-columns:repeat(auto-fill,minmax(200px,1fr));gap:12px}"
            ".grid img{display:block;width:100%;height:200px;object-fit:cover;border-radius:8px}"
            ".empty{padding:22px;border:1px dashed #e6e9ef;border-radius:8px;color:#5b6472}"
            "</style>\n"
        )
        f.write("</head><body>\n<div class=\"wrap\">\n")
        f.write("<div class=\"top\">")
        f.write(f"<h1>{html.escape(event_id)}</h1>")
        f.write(f"<div class=\"meta\">{count} photo{'s' if count != 1 else ''}</div>")
        f.write("</div>\n")

        if not photos:
            f.write("<div class=\"empty\">No photos uploaded yet.</div>\n")
        else:
            f.write("<div class=\"grid\">\n")
            for p in photos:
                f.write(
                    "<a href=\"{url}\"><img src=\"{url}\" loading=\"lazy\" decoding=\"async\" "
                    "alt=\"{label}\" title=\"{when}\"></a>\n".format(
                        url=html.escape(p.public_url),
                        label=html.escape(p.display_label),
                        when=html.escape(p.created_at.isoformat()),
                    )
                )
            f.write("</div>\n")
        f.write("</div></body></html>\n")
    tmp.replace(out_path)


class GalleryHtmlWriter:
    """Photo listener that re-renders a static gallery page on every snapshot."""

    def __init__(self, *, event_id: str, out_path: Path) -> None:
        self.event_id = event_id
        self.out_path = out_path

    def __call__(self, photos: PhotoSnapshot) -> None:
        build_gallery_html(event_id=self.event_id, photos=photos, out_path=self.out_path)
