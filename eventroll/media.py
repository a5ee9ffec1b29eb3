from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path

MB = 1024 * 1024

JPEG_EXTS = {".jpg", ".jpeg"}
IMAGE_EXTS = JPEG_EXTS | {".png", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".heic"}

_FALLBACK_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(frozen=True)
class Blob:
    """File content plus its declared name and type."""

    name: str
    data: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path) -> "Blob":
        return cls(name=path.name, data=path.read_bytes(), content_type=guess_content_type(path.name))


def guess_content_type(name: str) -> str:
    ctype, _ = mimetypes.guess_type(name)
    return ctype or "application/octet-stream"


def is_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTS


def extension_for(blob: Blob) -> str:
    """
    Extension used in store keys: the original file's extension (lower-cased),
    else one derived from the content type, else "bin".
    """
    suffix = Path(blob.name).suffix
    if len(suffix) > 1:
        return suffix[1:].lower()
    ext = _FALLBACK_EXTENSIONS.get(blob.content_type)
    if ext is None:
        guessed = mimetypes.guess_extension(blob.content_type or "")
        ext = guessed[1:] if guessed else None
    return ext or "bin"


def format_size(n: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    f = float(n)
    for u in units:
        if f < 1024.0 or u == units[-1]:
            return f"{f:.1f} {u}" if u != "B" else f"{int(f)} B"
        f /= 1024.0
    return f"{int(n)} B"
