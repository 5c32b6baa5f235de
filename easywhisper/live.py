"""
Live transcription session.

At most one whisper-stream process exists at a time. Its stdout is turned
into ``text`` events, one per read: ANSI control sequences stripped,
whitespace trimmed, empty reads dropped, nothing buffered across reads.
stderr lines go to the console. ``state`` carries "started" once the
process exists and "stopped" when it exits for any reason.

A stop() that arrives while start() is still resolving the binary or the
model is remembered: start() then returns without spawning, or
terminates the child it has just spawned.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .config import CANCEL_GRACE_SECONDS, DEFAULT_LENGTH_MS, DEFAULT_STEP_MS, STREAM_BINARY, ModelSettings
from .errors import ConflictError, ResolutionError
from .events import Channel, ConsoleEvent, console_channel
from .models import ModelStore
from .process_manager import ManagedProcess
from .resolver import BinaryResolver
from .workspace import Workspace

logger = logging.getLogger(__name__)

STARTED = "started"
STOPPED = "stopped"

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
MISSING_STREAM_HINT = "Whisper live binary missing. Compile binaries before starting live transcription."


@dataclass
class LiveRequest:
    settings: ModelSettings = field(default_factory=ModelSettings)
    step_ms: int = DEFAULT_STEP_MS
    length_ms: int = DEFAULT_LENGTH_MS


def clean_chunk(text: str) -> str:
    """Strip ANSI sequences and surrounding whitespace from one stdout read."""
    return ANSI_ESCAPE.sub("", text).strip()


def live_arguments(model_path: Union[str, Path], request: LiveRequest) -> List[str]:
    args = [
        "-m", str(model_path),
        "-l", request.settings.language,
        "--step", str(request.step_ms),
        "--length", str(request.length_ms),
    ]
    if request.settings.cpu_only:
        args.append("--no-gpu")
    return args


class LiveSession:
    """
    Supervisor for the single streaming process.

    Example:
        >>> live = LiveSession(workspace, resolver, ModelStore(workspace))
        >>> live.text.subscribe(print)
        >>> live.start(LiveRequest(ModelSettings(model="base.en")))
        >>> live.stop()
    """

    def __init__(self, workspace: Workspace, resolver: BinaryResolver, models: ModelStore):
        self.workspace = workspace
        self.resolver = resolver
        self.models = models

        self.console: Channel[ConsoleEvent] = console_channel()
        self.text: Channel[str] = Channel("live-text")
        self.state: Channel[str] = Channel("live-state")

        self._handle: Optional[ManagedProcess] = None
        self._starting = False
        self._stop_requested = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    def start(self, request: LiveRequest) -> None:
        """
        Launch whisper-stream.

        Raises:
            ConflictError: A session is already running or starting
            ResolutionError: whisper-stream has not been built
            ValidationError / DownloadError: Model could not be resolved
            ProcessError: The binary could not be spawned
        """
        with self._lock:
            if self._handle is not None or self._starting:
                raise ConflictError("Live transcription already running.")
            self._starting = True
            self._stop_requested = False

        try:
            stream = self.resolver.resolve(STREAM_BINARY, allow_system_fallback=False)
            if not stream.found:
                raise ResolutionError(STREAM_BINARY, stream.searched, MISSING_STREAM_HINT)

            model = self.models.resolve(request.settings, self._emit_console)
            if self._stop_pending():
                self._emit_console("Live transcription cancelled before start.")
                return
            self._emit_console("Starting live transcription.")

            proc = ManagedProcess(
                stream.command,
                live_arguments(model, request),
                merge_stderr=False,
                on_stdout_chunk=self._on_chunk,
                on_stderr_line=self._emit_console,
                on_spawn=self._on_spawn,
            )
            proc.on_exit = lambda code: self._on_exit(proc, code)
            proc.start()
            if self._stop_pending(proc):
                self._emit_console("Stopping live transcription.")
                proc.terminate()
        finally:
            with self._lock:
                self._starting = False
                self._stop_requested = False

    def stop(self, timeout: float = CANCEL_GRACE_SECONDS) -> bool:
        """
        Terminate the running session; no-op when there is none.

        The handle is cleared before signalling, so a new start() is
        possible right away. During a start() that has not spawned yet
        this only records the request. Returns False if the process
        outlived the grace period.
        """
        with self._lock:
            proc = self._handle
            if proc is None:
                if self._starting:
                    self._stop_requested = True
                return True
            self._handle = None

        self._emit_console("Stopping live transcription.")
        return proc.terminate(timeout)

    def _stop_pending(self, proc: Optional[ManagedProcess] = None) -> bool:
        """True if stop() was requested during start(); releases ``proc``'s handle."""
        with self._lock:
            if not self._stop_requested:
                return False
            if proc is not None and self._handle is proc:
                self._handle = None
            return True

    # ==================== Process callbacks ====================

    def _on_spawn(self, proc: ManagedProcess) -> None:
        with self._lock:
            self._handle = proc
        logger.info(f"Live session started (PID={proc.pid})")
        self.state.publish(STARTED)

    def _on_chunk(self, text: str) -> None:
        cleaned = clean_chunk(text)
        if cleaned:
            self.text.publish(cleaned)

    def _on_exit(self, proc: ManagedProcess, returncode: Optional[int]) -> None:
        with self._lock:
            if self._handle is proc:
                self._handle = None
        logger.info(f"Live session exited with code {returncode}")
        self.state.publish(STOPPED)

    def _emit_console(self, message: str) -> None:
        self.console.publish(ConsoleEvent(source="live", message=message))
