"""
Backend facade for a front end (GUI or CLI).

Wires the components around one workspace and exposes the request/response
operations plus merged event streams:

    progress    CompileProgressEvent (build and provisioning)
    console     ConsoleEvent from every component
    queue       QueueState
    finished    transcription queue drained
    live_text   recognized text chunks
    live_state  "started" / "stopped"

Long operations can run off the caller's thread through ``submit_compile``
and ``submit_dependencies``, which return futures.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .build import BuildPipeline, BuildResult, InstallStatus
from .config import ModelSettings
from .events import Channel, ConsoleEvent, forward
from .live import LiveRequest, LiveSession
from .models import ModelStore
from .resolver import BinaryResolver
from .transcription import TranscriptionQueue
from .workspace import Workspace

logger = logging.getLogger(__name__)


class Backend:
    def __init__(
        self,
        workspace: Optional[Workspace] = None,
        resource_dirs: Optional[Sequence[Path]] = None,
        app_dir: Optional[Path] = None,
    ):
        self.workspace = workspace or Workspace()
        self.resolver = BinaryResolver(self.workspace, resource_dirs, app_dir)
        self.models = ModelStore(self.workspace)
        self.build = BuildPipeline(self.workspace)
        self.transcription = TranscriptionQueue(self.workspace, self.resolver, self.models)
        self.live = LiveSession(self.workspace, self.resolver, self.models)

        self.console: Channel[ConsoleEvent] = Channel("console")
        for source in [self.build.console, self.transcription.console, self.live.console]:
            forward(source, self.console)

        self.progress = self.build.progress
        self.queue = self.transcription.queue
        self.finished = self.transcription.finished
        self.live_text = self.live.text
        self.live_state = self.live.state

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="easywhisper")

    # ==================== Build / provisioning ====================

    def ensure_dependencies(self, force: bool = False) -> BuildResult:
        return self.build.ensure_dependencies(force)

    def compile(self, force: bool = False) -> BuildResult:
        return self.build.compile(force)

    def submit_dependencies(self, force: bool = False) -> "Future[BuildResult]":
        return self._executor.submit(self.build.ensure_dependencies, force)

    def submit_compile(self, force: bool = False) -> "Future[BuildResult]":
        return self._executor.submit(self.build.compile, force)

    def check_install(self) -> InstallStatus:
        return self.build.check_install()

    def uninstall(self) -> BuildResult:
        self.live.stop()
        self.transcription.cancel_all()
        return self.build.uninstall()

    # ==================== Transcription ====================

    def enqueue(self, files: Iterable[str], settings: ModelSettings) -> int:
        return self.transcription.enqueue(files, settings)

    def cancel_all(self) -> bool:
        return self.transcription.cancel_all()

    # ==================== Live ====================

    def start_live(self, request: LiveRequest) -> None:
        self.live.start(request)

    def stop_live(self) -> bool:
        return self.live.stop()

    def shutdown(self) -> None:
        """Stop child processes and the background executor."""
        self.live.stop()
        self.transcription.cancel_all()
        self._executor.shutdown(wait=False)
        self.workspace.close_run_logger()
