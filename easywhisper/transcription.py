"""
Transcription Queue Module - easywhisper/transcription.py

FIFO job queue with a single worker thread for batch transcription.

Impact Analysis:
===============
- TranscriptionQueue.enqueue(): Adds one job per file, starts the worker if idle
- TranscriptionQueue.cancel_all(): Clears pending jobs and stops the active child
- whisper_arguments(): Argument vector for the batch binary

Dependencies:
============
- easywhisper/audio.py (stage 1, MediaNormalizer)
- easywhisper/models.py (stage 2, ModelStore)
- easywhisper/resolver.py (batch binary lookup)
- easywhisper/process_manager.py (CommandRunner)
- easywhisper/argsplit.py (extra arguments)

Used By:
========
- easywhisper/backend.py

Job stages:
==========
1. normalize   input -> WAV (skipped for .wav)
2. model       custom path / custom URL / standard model
3. transcribe  whisper-cli -m <model> -f <audio> ...

A failed job is reported on the console and the worker moves on; one
job's failure never stops the queue. Queue state is published after every
mutation.
"""

import copy
import logging
import threading
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Deque, Iterable, List, Optional, Union

from .argsplit import split_arguments
from .audio import MediaNormalizer
from .config import BATCH_BINARY, CANCEL_GRACE_SECONDS, ModelSettings
from .errors import EasyWhisperError, ResolutionError
from .events import Channel, ConsoleEvent, QueueState, console_channel
from .models import ModelStore
from .process_manager import CommandRunner
from .resolver import BinaryResolver
from .system import reveal_in_file_manager
from .workspace import Workspace

logger = logging.getLogger(__name__)

MISSING_BATCH_HINT = "Whisper CLI binary missing. Compile Whisper from the settings panel to continue."


@dataclass
class QueueItem:
    """One queued file with the settings in effect when it was enqueued."""
    file: str
    settings: ModelSettings


class _JobCancelled(EasyWhisperError):
    pass


def whisper_arguments(model_path: Union[str, Path], audio_path: Union[str, Path], settings: ModelSettings) -> List[str]:
    """
    Argument vector for the batch binary.

    Example:
        >>> whisper_arguments("m.bin", "a.wav", ModelSettings(language="de"))
        ['-m', 'm.bin', '-f', 'a.wav', '-otxt', '-l', 'de']
    """
    args = ["-m", str(model_path), "-f", str(audio_path)]
    if settings.output_txt:
        args.append("-otxt")
    if settings.output_srt:
        args.append("-osrt")
    if settings.cpu_only:
        args.append("--no-gpu")
    args += ["-l", settings.language]
    args += split_arguments(settings.extra_args or "")
    return args


def transcript_path(audio_path: Path) -> Path:
    """Where whisper-cli writes the text transcript for ``audio_path``."""
    return Path(f"{audio_path}.txt")


class TranscriptionQueue:
    """
    Serializes transcription jobs through one worker thread.

    Channels:
        console   ConsoleEvent lines (source "transcription")
        queue     QueueState after every mutation
        finished  None when the queue has drained

    Example:
        >>> jobs = TranscriptionQueue(workspace, resolver, ModelStore(workspace))
        >>> jobs.queue.subscribe(print)
        >>> jobs.enqueue(["talk.mp3", "memo.m4a"], ModelSettings())
        >>> jobs.wait_idle()
    """

    def __init__(
        self,
        workspace: Workspace,
        resolver: BinaryResolver,
        models: ModelStore,
        normalizer: Optional[MediaNormalizer] = None,
        reveal: Optional[Callable[[Path], None]] = reveal_in_file_manager,
    ):
        self.workspace = workspace
        self.resolver = resolver
        self.models = models
        self.reveal = reveal

        self.console: Channel[ConsoleEvent] = console_channel()
        self.queue: Channel[QueueState] = Channel("queue")
        self.finished: Channel[None] = Channel("finished")

        self.runner = CommandRunner("transcription", self.console)
        self.normalizer = normalizer or MediaNormalizer(resolver, self.runner)

        self._pending: Deque[QueueItem] = deque()
        self._current: Optional[QueueItem] = None
        self._worker: Optional[threading.Thread] = None
        self._generation = 0
        self._lock = threading.RLock()
        self._idle = threading.Event()
        self._idle.set()

    # ==================== Public operations ====================

    @property
    def state(self) -> QueueState:
        with self._lock:
            return self._snapshot()

    @property
    def is_processing(self) -> bool:
        return not self._idle.is_set()

    def enqueue(self, files: Iterable[str], settings: ModelSettings) -> int:
        """
        Queue one job per non-empty path.

        Each job gets its own copy of ``settings``. Nothing happens (no
        event, no worker) when no path is left after filtering.

        Returns:
            Number of jobs added
        """
        entries = [QueueItem(str(f), copy.deepcopy(settings)) for f in files if f]
        if not entries:
            return 0

        with self._lock:
            self._pending.extend(entries)
            self._publish_state()
            if self._worker is None:
                self._idle.clear()
                self._worker = threading.Thread(target=self._run, name="transcription-worker", daemon=True)
                self._worker.start()

        logger.info(f"Queued {len(entries)} file(s)")
        return len(entries)

    def cancel_all(self, timeout: float = CANCEL_GRACE_SECONDS) -> bool:
        """
        Drop every pending job and stop the active one.

        The pending list is empty (and published) before this waits on the
        active child. The runner refuses to start further children for the
        cancelled job, so a stage that was between subprocesses stops
        before its next one. Returns False if the child outlived the grace
        period.
        """
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
            self._generation += 1
            active = self.runner.cancel()
            self._publish_state()

        if dropped:
            logger.info(f"Cancelled {dropped} pending job(s)")
        if active is None:
            return True
        return active.terminate(timeout)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has drained the queue."""
        return self._idle.wait(timeout)

    # ==================== Worker ====================

    def _run(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    self._current = None
                    self._worker = None
                    self._publish_state()
                    self._idle.set()
                    break
                item = self._pending.popleft()
                self._current = item
                generation = self._generation
                self.runner.reset_cancel()
                self._publish_state()

            self._process(item, generation)

            with self._lock:
                self._current = None
                self._publish_state()

        self.finished.publish(None)

    def _process(self, item: QueueItem, generation: int) -> None:
        name = Path(item.file).name
        self.runner.run_log = self.workspace.run_logger()
        try:
            audio = self.normalizer.ensure_wav(item.file)
            self._check_cancelled(generation)
            model = self.models.resolve(item.settings, self.runner.emit)
            self._check_cancelled(generation)
            self._transcribe(audio, model, item.settings)
            self._check_cancelled(generation)
            if item.settings.open_after_complete and self.reveal:
                txt = transcript_path(audio)
                self.reveal(txt if txt.exists() else audio)
            self.runner.emit(f"Completed: {name}")
        except _JobCancelled:
            self.runner.emit(f"Cancelled: {name}")
        except EasyWhisperError as e:
            if generation != self._generation:
                self.runner.emit(f"Cancelled: {name}")
            else:
                self.runner.emit(f"Error processing {item.file}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error processing {item.file}")
            self.runner.emit(f"Error processing {item.file}: {e}")

    def _transcribe(self, audio: Path, model: Path, settings: ModelSettings) -> None:
        whisper = self.resolver.resolve(BATCH_BINARY, allow_system_fallback=False)
        if not whisper.found:
            raise ResolutionError(BATCH_BINARY, whisper.searched, MISSING_BATCH_HINT)

        self.runner.emit(f"Running {Path(whisper.command).name} on {audio.name}")
        self.runner.run(whisper.command, whisper_arguments(model, audio, settings))

    def _check_cancelled(self, generation: int) -> None:
        if generation != self._generation:
            raise _JobCancelled("cancelled")

    def _snapshot(self) -> QueueState:
        return QueueState(
            awaiting=[item.file for item in self._pending],
            processing=self._current.file if self._current else None,
            is_processing=self._current is not None,
        )

    def _publish_state(self) -> None:
        self.queue.publish(self._snapshot())
