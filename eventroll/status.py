from __future__ import annotations

import json
import os
import time
from collections import Counter
from pathlib import Path

from .uploader import TaskSnapshot, TaskStatus


class SnapshotWriter:
    """Upload snapshot listener that mirrors the task list into a JSON file."""

    def __init__(self, *, json_path: Path, event_id: str) -> None:
        self.json_path = json_path
        self.event_id = event_id

    def __call__(self, snapshot: TaskSnapshot) -> None:
        self.write(snapshot)

    def write(self, snapshot: TaskSnapshot) -> None:
        counts = Counter(t.status for t in snapshot)
        payload = {
            "event_id": self.event_id,
            "counts": {s.value: counts.get(s, 0) for s in TaskStatus},
            "tasks": [
                {
                    "id": t.id,
                    "name": t.name,
                    "size": t.size,
                    "status": t.status.value,
                    "progress": t.progress,
                    "preview": t.preview_uri,
                    "url": t.result_url,
                    "error": t.error_message,
                }
                for t in snapshot
            ],
            "updated_unix": time.time(),
        }
        self._atomic_write_json(self.json_path, payload)

    @staticmethod
    def _atomic_write_json(path: Path, payload: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True) + os.linesep, encoding="utf-8")
        tmp.replace(path)
