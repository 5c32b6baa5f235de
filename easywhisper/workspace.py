"""
Workspace layout on disk.

The workspace root holds everything the orchestration layer owns:

    <root>/
    ├── bin/          staged executables and shared libraries
    ├── models/       cached ggml weight files
    ├── toolchain/    provisioned compiler / SDK trees
    ├── downloads/    scratch space for in-flight downloads
    └── easywhisper.log   rolling log, overwritten per build run

Directories are created on demand and survive across runs. ``remove()``
deletes the whole tree.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from . import config

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "easywhisper.log"
RUN_LOGGER_NAME = "easywhisper.run"


class Workspace:
    """Paths under the workspace root plus the rolling run log."""

    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root) if root is not None else config.WORKSPACE_ROOT

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def models_dir(self) -> Path:
        return self.root / "models"

    @property
    def toolchain_dir(self) -> Path:
        return self.root / "toolchain"

    @property
    def downloads_dir(self) -> Path:
        return self.root / "downloads"

    @property
    def source_dir(self) -> Path:
        return self.root / config.SOURCE_DIR_NAME

    @property
    def build_dir(self) -> Path:
        return self.source_dir / "build"

    @property
    def log_file(self) -> Path:
        return self.root / LOG_FILE_NAME

    def ensure(self) -> Path:
        """Create all workspace directories if they don't exist."""
        for directory in [self.root, self.bin_dir, self.models_dir,
                          self.toolchain_dir, self.downloads_dir]:
            directory.mkdir(parents=True, exist_ok=True)
        return self.root

    def run_logger(self, reset: bool = False) -> logging.Logger:
        """
        Logger writing raw subprocess output to the rolling log file.

        Args:
            reset: Truncate the log file (start of a build/provisioning run)

        Returns:
            logging.Logger with a single FileHandler on ``log_file``
        """
        self.root.mkdir(parents=True, exist_ok=True)
        run_log = logging.getLogger(RUN_LOGGER_NAME)
        run_log.setLevel(logging.INFO)
        run_log.propagate = False

        target = str(self.log_file.resolve())
        current = [h for h in run_log.handlers
                   if isinstance(h, logging.FileHandler) and h.baseFilename == target]
        if current and not reset:
            return run_log

        for handler in list(run_log.handlers):
            run_log.removeHandler(handler)
            handler.close()

        file_handler = logging.FileHandler(self.log_file, mode='w' if reset else 'a', encoding='utf-8')
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s', datefmt='%H:%M:%S'))
        run_log.addHandler(file_handler)
        return run_log

    def close_run_logger(self) -> None:
        run_log = logging.getLogger(RUN_LOGGER_NAME)
        for handler in list(run_log.handlers):
            run_log.removeHandler(handler)
            handler.close()

    def remove(self) -> None:
        """Delete the entire workspace tree, unconditionally."""
        self.close_run_logger()
        if self.root.exists():
            logger.info(f"Removing workspace {self.root}")
            shutil.rmtree(self.root, ignore_errors=True)
