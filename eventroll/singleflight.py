from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator


class ConcurrencyBusy(RuntimeError):
    """The operation was dropped because another run holds the guard."""


class SingleFlight:
    """
    Drop-on-busy guard for one operation on one event loop.

    ``hold()`` is a plain (synchronous) context manager so the flag is set
    before the caller's first ``await`` and cleared after its last one.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._held = False

    @property
    def busy(self) -> bool:
        return self._held

    @contextmanager
    def hold(self) -> Iterator[None]:
        if self._held:
            raise ConcurrencyBusy(f"{self.name} already in progress")
        self._held = True
        try:
            yield
        finally:
            self._held = False
