"""
Event channels and payloads.

Each component owns its channels and is the only one publishing on them.
Listeners subscribe with a callback and get back a function that removes
the subscription again. Publishing never blocks on a listener: a callback
that raises is logged and skipped.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CompileProgressEvent:
    """Build / provisioning progress for one step."""
    step: str
    message: str
    progress: int
    state: StepState
    error: Optional[str] = None


@dataclass(frozen=True)
class ConsoleEvent:
    """One console line. source is compile, transcription, live or system."""
    source: str
    message: str


@dataclass(frozen=True)
class QueueState:
    """Observable snapshot of the transcription queue."""
    awaiting: List[str] = field(default_factory=list)
    processing: Optional[str] = None
    is_processing: bool = False


class Channel(Generic[T]):
    """Typed publish/subscribe channel for a single event category."""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, payload: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(payload)
            except Exception as e:
                logger.warning(f"[{self.name}] subscriber error: {e}")

    def __len__(self) -> int:
        return len(self._subscribers)


def console_channel() -> "Channel[ConsoleEvent]":
    return Channel("console")


def forward(source: Channel, target: Channel) -> Callable[[], None]:
    """Republish everything from source on target."""
    return source.subscribe(target.publish)
