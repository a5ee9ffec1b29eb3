from __future__ import annotations

import tempfile
import uuid
from pathlib import Path

from .media import Blob, extension_for


class PreviewHandle:
    """A locally resolvable copy of a selected file, owned by one upload task."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._released = False

    @property
    def uri(self) -> str:
        return self.path.as_uri()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"PreviewHandle({self.path.name}, {state})"


class PreviewStore:
    """
    Creates preview handles under ``root``.

    Without a root a private temporary directory is used and removed by
    ``cleanup()``.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._tmp: tempfile.TemporaryDirectory | None = None
        if root is None:
            self._tmp = tempfile.TemporaryDirectory(prefix="eventroll-previews-")
            root = Path(self._tmp.name)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def create(self, blob: Blob) -> PreviewHandle:
        path = self.root / f"{uuid.uuid4().hex}.{extension_for(blob)}"
        path.write_bytes(blob.data)
        return PreviewHandle(path)

    def cleanup(self) -> None:
        if self._tmp is not None:
            self._tmp.cleanup()
            self._tmp = None
