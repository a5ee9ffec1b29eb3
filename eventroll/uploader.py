from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .image_processing import CompressionFailed, compress
from .logging_utils import get_logger
from .media import MB, Blob, extension_for, format_size
from .preview import PreviewHandle, PreviewStore
from .singleflight import ConcurrencyBusy, SingleFlight
from .store import StoreAdapter

MAX_UPLOAD_BYTES = 10 * MB
COMPRESS_THRESHOLD_BYTES = 2 * MB
WAVE_SIZE = 3
STARTED_PROGRESS = 10


class ValidationError(RuntimeError):
    pass


class InvalidTransition(RuntimeError):
    pass


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.ERROR)


_ALLOWED = {
    TaskStatus.PENDING: {TaskStatus.UPLOADING},
    TaskStatus.UPLOADING: {TaskStatus.COMPLETE, TaskStatus.ERROR},
    TaskStatus.COMPLETE: set(),
    TaskStatus.ERROR: set(),
}


class UploadTask:
    """One selected file. Mutated only by the UploadCoordinator that owns it."""

    def __init__(self, source: Blob, preview: PreviewHandle) -> None:
        self.id = uuid.uuid4().hex
        self.source = source
        self.preview = preview
        self.progress = 0
        self.status = TaskStatus.PENDING
        self.key: str | None = None
        self.result_url: str | None = None
        self.error_message: str | None = None

    def _move(self, status: TaskStatus) -> None:
        if status not in _ALLOWED[self.status]:
            raise InvalidTransition(f"Task {self.id}: {self.status.value} -> {status.value} is not allowed")
        self.status = status

    def mark_uploading(self) -> None:
        self._move(TaskStatus.UPLOADING)
        self.progress = STARTED_PROGRESS

    def mark_complete(self, url: str) -> None:
        self._move(TaskStatus.COMPLETE)
        self.progress = 100
        self.result_url = url

    def mark_error(self, message: str) -> None:
        self._move(TaskStatus.ERROR)
        self.error_message = message

    def view(self) -> "TaskView":
        return TaskView(
            id=self.id,
            name=self.source.name,
            size=self.source.size,
            preview_uri=None if self.preview.released else self.preview.uri,
            progress=self.progress,
            status=self.status,
            result_url=self.result_url,
            error_message=self.error_message,
        )

    def __repr__(self) -> str:
        return f"UploadTask({self.source.name!r}, {self.status.value}, {self.progress}%)"


@dataclass(frozen=True)
class TaskView:
    id: str
    name: str
    size: int
    preview_uri: str | None
    progress: int
    status: TaskStatus
    result_url: str | None
    error_message: str | None


@dataclass(frozen=True)
class Rejection:
    file: Blob
    error: ValidationError

    @property
    def reason(self) -> str:
        return str(self.error)


TaskSnapshot = tuple[TaskView, ...]
SnapshotListener = Callable[[TaskSnapshot], None]


def _reject_reason(blob: Blob) -> str:
    return f"{blob.name} is {format_size(blob.size)}; the limit is {format_size(MAX_UPLOAD_BYTES)}"


def _error_text(e: BaseException) -> str:
    return str(e).strip() or type(e).__name__


def _first_line(e: BaseException) -> str:
    return _error_text(e).splitlines()[0]


class UploadCoordinator:
    """
    Owns the upload task list for one event.

    Tasks are uploaded in waves of ``WAVE_SIZE``; a wave starts only after
    every task of the previous wave has finished. ``process_pending`` is
    single-flight: calling it while a run is active is a logged no-op.
    """

    def __init__(
        self,
        store: StoreAdapter,
        event_id: str,
        *,
        previews: PreviewStore | None = None,
        logger: logging.Logger | None = None,
        listeners: Iterable[SnapshotListener] = (),
        compress_ceiling: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self.store = store
        self.event_id = event_id
        # Lowered when the store's own object limit is below the upload ceiling.
        self.compress_ceiling = min(compress_ceiling, MAX_UPLOAD_BYTES)
        self.previews = previews or PreviewStore()
        self.logger = logger or get_logger()
        self._tasks: list[UploadTask] = []
        self._listeners: list[SnapshotListener] = list(listeners)
        self._flight = SingleFlight("upload")

    @property
    def tasks(self) -> tuple[UploadTask, ...]:
        return tuple(self._tasks)

    @property
    def busy(self) -> bool:
        return self._flight.busy

    def get(self, task_id: str) -> UploadTask | None:
        for t in self._tasks:
            if t.id == task_id:
                return t
        return None

    def subscribe(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> TaskSnapshot:
        return tuple(t.view() for t in self._tasks)

    def _publish(self) -> None:
        snap = self.snapshot()
        for listener in self._listeners:
            listener(snap)

    def select_files(self, files: Iterable[Blob]) -> tuple[list[UploadTask], list[Rejection]]:
        accepted: list[UploadTask] = []
        rejected: list[Rejection] = []
        for blob in files:
            if blob.size > MAX_UPLOAD_BYTES:
                reason = _reject_reason(blob)
                self.logger.warning(f"Rejected {blob.name}: {reason}")
                rejected.append(Rejection(file=blob, error=ValidationError(reason)))
                continue
            task = UploadTask(blob, self.previews.create(blob))
            accepted.append(task)
            self.logger.debug(f"Queued {blob.name} ({format_size(blob.size)}) as task {task.id}")

        if accepted:
            self._tasks.extend(accepted)
            self._publish()
        return accepted, rejected

    def select_paths(self, paths: Iterable[Path]) -> tuple[list[UploadTask], list[Rejection]]:
        return self.select_files(Blob.from_path(Path(p)) for p in paths)

    def discard(self, task_id: str) -> bool:
        """Remove a pending task. In-flight, finished and unknown tasks are left alone."""
        task = self.get(task_id)
        if task is None or task.status is not TaskStatus.PENDING:
            self.logger.debug(f"Ignoring discard of task {task_id}: not pending")
            return False
        task.preview.release()
        self._tasks.remove(task)
        self._publish()
        return True

    def clear_completed(self) -> int:
        done = [t for t in self._tasks if t.status is TaskStatus.COMPLETE]
        for t in done:
            t.preview.release()
        if done:
            self._tasks = [t for t in self._tasks if t.status is not TaskStatus.COMPLETE]
            self._publish()
        return len(done)

    def close(self) -> None:
        for t in self._tasks:
            t.preview.release()
        self._tasks.clear()
        self.previews.cleanup()

    def __enter__(self) -> "UploadCoordinator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _new_key(self, blob: Blob) -> str:
        return f"{self.event_id}/{uuid.uuid4().hex}.{extension_for(blob)}"

    async def process_pending(self) -> list[str]:
        ran: list[UploadTask] = []
        try:
            with self._flight.hold():
                pending = [t for t in self._tasks if t.status is TaskStatus.PENDING]
                if not pending:
                    return []

                waves = [pending[i : i + WAVE_SIZE] for i in range(0, len(pending), WAVE_SIZE)]
                self.logger.info(f"Uploading {len(pending)} photos in {len(waves)} waves of up to {WAVE_SIZE}")
                for n, wave in enumerate(waves, 1):
                    # Tasks discarded while earlier waves ran are no longer tracked.
                    wave = [t for t in wave if t in self._tasks and t.status is TaskStatus.PENDING]
                    if not wave:
                        self.logger.debug(f"Wave {n}/{len(waves)} skipped: every task was discarded")
                        continue
                    ran.extend(wave)
                    await self._run_wave(wave)
                    self.logger.debug(f"Wave {n}/{len(waves)} finished")
        except ConcurrencyBusy:
            self.logger.debug("Upload run already active; dropping process_pending call")
            return []

        urls = [t.result_url for t in ran if t.status is TaskStatus.COMPLETE and t.result_url]
        failed = sum(1 for t in ran if t.status is TaskStatus.ERROR)
        self.logger.info(f"Upload run finished: {len(urls)} complete, {failed} failed")
        return urls

    async def _run_wave(self, wave: list[UploadTask]) -> None:
        for task in wave:
            task.mark_uploading()
        self._publish()
        # Every task catches its own failures, so gather never raises here.
        await asyncio.gather(*(self._upload_one(t) for t in wave))
        self._publish()

    async def _upload_one(self, task: UploadTask) -> None:
        blob = task.source
        try:
            if blob.size > COMPRESS_THRESHOLD_BYTES:
                blob = await self._compress(blob)
            task.key = self._new_key(task.source)
            await self.store.upload(task.key, blob)
            url = self.store.get_public_url(task.key)
        except Exception as e:  # noqa: BLE001 - failures stay on the task
            self.logger.error(f"Upload failed: {task.source.name} -> {task.key or self.event_id}: {e}")
            task.mark_error(_error_text(e))
            return
        task.mark_complete(url)
        self.logger.info(f"Uploaded: {task.source.name} -> {task.key}")

    async def _compress(self, blob: Blob) -> Blob:
        try:
            smaller = await asyncio.to_thread(compress, blob, self.compress_ceiling)
        except CompressionFailed as e:
            self.logger.warning(f"Compression failed, uploading original {blob.name}: {_first_line(e)}")
            return blob
        if smaller is not blob:
            self.logger.debug(f"Compressed {blob.name}: {format_size(blob.size)} -> {format_size(smaller.size)}")
        return smaller
