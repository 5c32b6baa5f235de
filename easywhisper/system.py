"""
System Utilities Module - easywhisper/system.py

Functions for host detection, core counting and file manager integration.

Impact Analysis:
===============
- host_platform(): Selects the installer family and binary naming
- cpu_cores(): Feeds codec thread count and compile parallelism
- codec_thread_count(): Used by audio.py for ffmpeg threading flags
- build_job_count(): Used by build.py for the parallel compile
- reveal_in_file_manager(): Used by transcription.py after a finished job

Dependencies:
============
- easywhisper/config.py (MAX_CODEC_THREADS)

Used By:
========
- easywhisper/resolver.py
- easywhisper/audio.py
- easywhisper/build.py
- easywhisper/toolchain/installers.py
- easywhisper/transcription.py

Functions:
=========
- host_platform() -> str
- executable_name(base: str, host: str) -> str
- cpu_cores() -> int
- codec_thread_count() -> int
- build_job_count() -> int
- is_privileged() -> bool
- reveal_in_file_manager(path: Path) -> None
"""

import logging
import os
import platform
import subprocess
from pathlib import Path
from typing import Optional

from .config import MAX_CODEC_THREADS

logger = logging.getLogger(__name__)

WINDOWS = "windows"
MACOS = "macos"
LINUX = "linux"


def host_platform() -> str:
    """
    Normalized host platform family.

    Returns:
        str: "windows", "macos" or "linux"

    Example:
        >>> host_platform()
        'linux'
    """
    system = platform.system()
    if system == "Windows":
        return WINDOWS
    if system == "Darwin":
        return MACOS
    return LINUX


def executable_name(base: str, host: Optional[str] = None) -> str:
    """File name of a tool on the given host (adds .exe on Windows)."""
    host = host or host_platform()
    if host == WINDOWS and not base.lower().endswith(".exe"):
        return f"{base}.exe"
    return base


def cpu_cores() -> int:
    """Logical CPU count, at least 1."""
    return max(1, os.cpu_count() or 1)


def codec_thread_count() -> int:
    """
    Thread count for ffmpeg decode and filter stages.

    Capped at MAX_CODEC_THREADS; more threads than that buy nothing for
    a single audio stream.
    """
    return min(MAX_CODEC_THREADS, cpu_cores())


def build_job_count() -> int:
    """Parallel compile jobs, leaving one core for the rest of the system."""
    return max(1, cpu_cores() - 1)


def is_privileged() -> bool:
    """True when running as root (POSIX). Always False on Windows."""
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def reveal_in_file_manager(path: Path) -> None:
    """
    Show a file in the platform file manager.

    Fire-and-forget: the file manager process is not awaited and a
    failure to launch it is only logged.
    """
    host = host_platform()
    if host == WINDOWS:
        cmd = ["explorer", f"/select,{path}"]
    elif host == MACOS:
        cmd = ["open", "-R", str(path)]
    else:
        cmd = ["xdg-open", str(Path(path).parent)]

    try:
        subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as e:
        logger.warning(f"Could not open file manager for {path}: {e}")
