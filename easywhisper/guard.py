"""
Single-slot exclusivity guard for long-running operations.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import ConflictError


class ExclusiveSlot:
    """
    A slot that at most one operation can hold at a time.

    Acquisition never waits: a second caller is refused with ConflictError
    while the slot is held. ``busy`` and ``holder`` make the current owner
    observable.

    Example:
        >>> slot = ExclusiveSlot("compile")
        >>> with slot.hold("compile"):
        ...     assert slot.busy
    """

    def __init__(self, name: str, conflict_message: Optional[str] = None):
        self.name = name
        self.conflict_message = conflict_message or f"{name} already in progress."
        self._lock = threading.Lock()
        self._holder: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    def try_acquire(self, holder: str) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._holder = holder
        return True

    def release(self) -> None:
        self._holder = None
        self._lock.release()

    @contextmanager
    def hold(self, holder: str) -> Iterator[None]:
        if not self.try_acquire(holder):
            raise ConflictError(self.conflict_message)
        try:
            yield
        finally:
            self.release()
