"""
Process Manager - subprocess execution for the orchestration core

Handles:
- Process lifecycle (spawn, wait, terminate)
- Output capture, line by line or chunk by chunk
- Console forwarding and the rolling run log
- Best-effort cancellation with a bounded grace period

Usage:
    from easywhisper.process_manager import CommandRunner

    runner = CommandRunner("compile", console)

    # Run to completion, raising ProcessError on failure
    runner.run("cmake", ["--build", "build"])

    # From another thread: cancel whatever is running
    runner.terminate_active()

Termination sends SIGTERM (TerminateProcess on Windows) and waits up to
the grace period. There is no SIGKILL escalation: if the child ignores the
request the caller proceeds as if it had exited.
"""

import codecs
import logging
import os
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence

from .config import CANCEL_GRACE_SECONDS
from .errors import ProcessError
from .events import Channel, ConsoleEvent

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
LOG_TAIL_LINES = 1000


def split_output_lines(text: str) -> List[str]:
    """Split raw output on CR/LF, strip each piece, drop empty ones."""
    lines = []
    for piece in text.replace("\r", "\n").split("\n"):
        piece = piece.strip()
        if piece:
            lines.append(piece)
    return lines


@dataclass
class ProcessInfo:
    """Information about a spawned process."""
    command: str
    args: List[str]
    process: subprocess.Popen
    pid: int
    start_time: datetime = field(default_factory=datetime.now)
    logs: Deque[str] = field(default_factory=lambda: deque(maxlen=LOG_TAIL_LINES))


class ManagedProcess:
    """
    One child process plus the threads that drain its pipes.

    stdout is delivered either as cleaned lines (``on_stdout_line``) or as
    raw decoded chunks, one callback per read (``on_stdout_chunk``). stderr
    is merged into stdout unless ``merge_stderr`` is False, in which case
    its lines go to ``on_stderr_line``.

    ``on_spawn`` runs right after the OS process exists and before any
    output is read; ``on_exit`` runs once the process has exited and its
    output has been drained.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        *,
        merge_stderr: bool = True,
        on_stdout_line: Optional[Callable[[str], None]] = None,
        on_stdout_chunk: Optional[Callable[[str], None]] = None,
        on_stderr_line: Optional[Callable[[str], None]] = None,
        on_spawn: Optional[Callable[["ManagedProcess"], None]] = None,
        on_exit: Optional[Callable[[Optional[int]], None]] = None,
    ):
        self.command = str(command)
        self.args = [str(a) for a in args]
        self.env: Optional[Dict[str, str]] = dict(env) if env is not None else None
        self.merge_stderr = merge_stderr
        self.on_stdout_line = on_stdout_line
        self.on_stdout_chunk = on_stdout_chunk
        self.on_stderr_line = on_stderr_line
        self.on_spawn = on_spawn
        self.on_exit = on_exit

        self.info: Optional[ProcessInfo] = None
        self._readers: List[threading.Thread] = []
        self._exited = threading.Event()

    # ==================== Lifecycle ====================

    def start(self) -> "ManagedProcess":
        """Spawn the child. Raises ProcessError if it cannot be started."""
        try:
            process = subprocess.Popen(
                [self.command, *self.args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self.merge_stderr else subprocess.PIPE,
                env=self.env,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn {self.command}: {e}")
            raise ProcessError(self.command, spawn_error=e) from e

        self.info = ProcessInfo(
            command=self.command,
            args=self.args,
            process=process,
            pid=process.pid,
        )
        logger.debug(f"Started {os.path.basename(self.command)} PID={process.pid}")

        if self.on_spawn:
            self._safe_call(self.on_spawn, self)

        if self.on_stdout_chunk:
            stdout_reader = threading.Thread(target=self._read_chunks, args=(process.stdout,), daemon=True)
        else:
            stdout_reader = threading.Thread(
                target=self._read_lines, args=(process.stdout, self.on_stdout_line), daemon=True
            )
        self._readers.append(stdout_reader)
        if not self.merge_stderr:
            self._readers.append(threading.Thread(
                target=self._read_lines, args=(process.stderr, self.on_stderr_line), daemon=True
            ))
        for reader in self._readers:
            reader.start()

        threading.Thread(target=self._wait_for_exit, daemon=True).start()
        return self

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Block until the process has exited and its output is drained."""
        self._exited.wait(timeout)
        return self.returncode

    def terminate(self, timeout: float = CANCEL_GRACE_SECONDS) -> bool:
        """
        Ask the process to exit and wait up to ``timeout`` seconds.

        Returns:
            True if the process exited within the grace period
        """
        if self.info is None or self._exited.is_set():
            return True

        process = self.info.process
        logger.info(f"Sending terminate to {os.path.basename(self.command)} PID={process.pid}")
        try:
            process.terminate()
        except OSError:
            # Already gone
            pass

        exited = self._exited.wait(timeout)
        if not exited:
            logger.warning(
                f"{os.path.basename(self.command)} PID={process.pid} did not exit within "
                f"{timeout:.1f}s, giving up"
            )
        return exited

    @property
    def pid(self) -> Optional[int]:
        return self.info.pid if self.info else None

    @property
    def returncode(self) -> Optional[int]:
        return self.info.process.returncode if self.info else None

    @property
    def running(self) -> bool:
        return self.info is not None and not self._exited.is_set()

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def tail(self, last_n: int = 100) -> List[str]:
        """Recent output lines."""
        if not self.info:
            return []
        return list(self.info.logs)[-last_n:]

    # ==================== Readers ====================

    def _read_lines(self, stream, callback: Optional[Callable[[str], None]]) -> None:
        try:
            for raw in iter(stream.readline, b""):
                for line in split_output_lines(raw.decode("utf-8", errors="replace")):
                    self.info.logs.append(line)
                    if callback:
                        self._safe_call(callback, line)
        except (OSError, ValueError) as e:
            logger.debug(f"Output reader for {self.command} stopped: {e}")
        finally:
            stream.close()

    def _read_chunks(self, stream) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = stream.read1(READ_CHUNK_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    self._safe_call(self.on_stdout_chunk, text)
        except (OSError, ValueError) as e:
            logger.debug(f"Chunk reader for {self.command} stopped: {e}")
        finally:
            stream.close()

    def _wait_for_exit(self) -> None:
        returncode = self.info.process.wait()
        for reader in self._readers:
            reader.join(timeout=5)
        self._exited.set()
        logger.debug(f"{os.path.basename(self.command)} PID={self.info.pid} exited with {returncode}")
        if self.on_exit:
            self._safe_call(self.on_exit, returncode)

    def _safe_call(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Process callback error ({self.command}): {e}")


class CommandRunner:
    """
    Runs external programs to completion on behalf of one component.

    Features:
    - Merged stdout/stderr forwarded line by line to a console channel
    - Quiet mode: output held back and reported as one block on failure
    - Every line appended to the rolling run log when one is attached
    - Tracks the active child so another thread can cancel it
    - Once cancelled, refuses to start children until reset_cancel()

    Example:
        >>> runner = CommandRunner("transcription", console)
        >>> runner.run("ffmpeg", ["-version"], quiet=True)
    """

    def __init__(
        self,
        source: str,
        console: Channel[ConsoleEvent],
        run_log: Optional[logging.Logger] = None,
    ):
        self.source = source
        self.console = console
        self.run_log = run_log
        self._active: Optional[ManagedProcess] = None
        self._lock = threading.Lock()
        self._cancelled = False

    @property
    def active(self) -> Optional[ManagedProcess]:
        return self._active

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        quiet: bool = False,
        label: Optional[str] = None,
    ) -> List[str]:
        """
        Run a program and wait for it.

        Args:
            command: Executable path or name
            args: Argument vector (without the executable)
            env: Full environment for the child (None inherits ours)
            quiet: Hold output back unless the command fails
            label: Prefix for console lines, e.g. the step name

        Returns:
            List of output lines

        Raises:
            ProcessError: Nonzero exit code, spawn failure, or the runner
                was cancelled before the child started
        """
        command = str(command)
        args = [str(a) for a in args]
        prefix = f"[{label}] " if label else ""
        captured: List[str] = []

        if self._cancelled:
            raise ProcessError(command, cancelled=True)

        if self.run_log:
            self.run_log.info(f"$ {command} {' '.join(args)}")

        def on_line(line: str) -> None:
            captured.append(line)
            if self.run_log:
                self.run_log.info(line)
            if not quiet:
                self.emit(f"{prefix}{line}")

        proc = ManagedProcess(
            command, args, env,
            merge_stderr=True,
            on_stdout_line=on_line,
            on_spawn=self._set_active,
        )
        try:
            proc.start()
            if self._cancelled:
                # cancel landed between the check above and on_spawn
                proc.terminate()
            returncode = proc.wait()
        except ProcessError as e:
            if self.run_log:
                self.run_log.info(str(e))
            raise
        finally:
            with self._lock:
                if self._active is proc:
                    self._active = None

        if returncode != 0:
            if quiet and captured:
                self.emit(f"{prefix}{os.path.basename(command)} output:\n" + "\n".join(captured))
            raise ProcessError(command, exit_code=returncode, output=captured)
        return captured

    def cancel(self) -> Optional[ManagedProcess]:
        """
        Refuse new children until reset_cancel() and return the active one.

        Does not wait; callers terminate the returned process themselves.
        """
        with self._lock:
            self._cancelled = True
            return self._active

    def reset_cancel(self) -> None:
        with self._lock:
            self._cancelled = False

    def terminate_active(self, timeout: float = CANCEL_GRACE_SECONDS) -> bool:
        """Cancel and terminate the running child, if any. Never escalates to kill."""
        proc = self.cancel()
        if proc is None:
            return True
        return proc.terminate(timeout)

    def emit(self, message: str) -> None:
        logger.info(f"[{self.source}] {message}")
        self.console.publish(ConsoleEvent(source=self.source, message=message))

    def _set_active(self, proc: ManagedProcess) -> None:
        with self._lock:
            self._active = proc
