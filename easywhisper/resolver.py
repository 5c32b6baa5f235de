"""
Binary Resolver Module - easywhisper/resolver.py

Locates executables across the places they can ship from and stages the
first hit into the workspace ``bin/`` directory.

Impact Analysis:
===============
- BinaryResolver.resolve(): Used for whisper-cli, whisper-stream and ffmpeg.
  After the first successful lookup every later lookup for the same tool
  hits the workspace copy, regardless of where the binary came from.
- BinaryResolver.require(): Raises ResolutionError with the search trail

Dependencies:
============
- easywhisper/config.py (RESOURCES_DIR, APP_DIR, BUILD_RESOURCES_NAME, MAC_BUNDLE_NAME)
- easywhisper/system.py (executable_name, host_platform)
- easywhisper/workspace.py (bin_dir)

Used By:
========
- easywhisper/audio.py (ffmpeg)
- easywhisper/transcription.py (batch binary)
- easywhisper/live.py (streaming binary)
- easywhisper/backend.py (shared instance)

Search Order:
============
1. <workspace>/bin/<exe>
2. <resources>/<exe>
3. <resources>/mac-bin/<exe>              (macOS only)
4. <app>/<exe>
5. <app>/buildResources/<exe>
6. <app>/buildResources/mac-bin/<exe>     (macOS only)
7. <exe> on PATH, if it answers the probe (system fallback)
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from . import config
from .errors import ResolutionError
from .system import MACOS, executable_name, host_platform
from .workspace import Workspace

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 10


@dataclass
class BinaryResolution:
    """Result of a single lookup; recomputed on every call."""
    command: str
    found: bool
    searched: List[str] = field(default_factory=list)
    staged: bool = False


class BinaryResolver:
    """
    Deterministic executable lookup with staging into the workspace.

    Example:
        >>> resolver = BinaryResolver(Workspace())
        >>> result = resolver.resolve("whisper-cli", allow_system_fallback=False)
        >>> result.found, result.staged
        (True, True)
    """

    def __init__(
        self,
        workspace: Workspace,
        resource_dirs: Optional[Sequence[Path]] = None,
        app_dir: Optional[Path] = None,
        host: Optional[str] = None,
    ):
        self.workspace = workspace
        self.resource_dirs = [Path(p) for p in (
            resource_dirs if resource_dirs is not None else [config.RESOURCES_DIR]
        )]
        self.app_dir = Path(app_dir) if app_dir is not None else config.APP_DIR
        self.host = host or host_platform()

    def candidates(self, tool: str) -> List[Path]:
        """Candidate paths for ``tool`` in priority order, duplicates removed."""
        exe = executable_name(tool, self.host)
        paths = [self.workspace.bin_dir / exe]

        for resources in self.resource_dirs:
            paths.append(resources / exe)
            if self.host == MACOS:
                paths.append(resources / config.MAC_BUNDLE_NAME / exe)

        build_resources = self.app_dir / config.BUILD_RESOURCES_NAME
        paths.append(self.app_dir / exe)
        paths.append(build_resources / exe)
        if self.host == MACOS:
            paths.append(build_resources / config.MAC_BUNDLE_NAME / exe)

        unique: List[Path] = []
        seen = set()
        for path in paths:
            key = os.path.normpath(str(path))
            if key not in seen:
                seen.add(key)
                unique.append(path)
        return unique

    def resolve(
        self,
        tool: str,
        allow_system_fallback: bool = True,
        probe_args: Sequence[str] = ("-version",),
    ) -> BinaryResolution:
        """
        Find ``tool``, staging it into the workspace when found elsewhere.

        Args:
            tool: Logical tool name without extension (e.g. "whisper-cli")
            allow_system_fallback: Try the bare name on PATH as a last resort
            probe_args: Arguments used to check the PATH candidate runs

        Returns:
            BinaryResolution; ``found=False`` carries the full search trail
        """
        candidates = self.candidates(tool)
        searched = [str(p) for p in candidates]
        canonical = candidates[0]

        for candidate in candidates:
            if not _is_regular_file(candidate):
                continue

            if candidate == canonical:
                return BinaryResolution(str(candidate), True, searched)

            try:
                canonical.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(candidate, canonical)
            except OSError as e:
                logger.warning(f"Could not stage {candidate} into {canonical}: {e}")
                return BinaryResolution(str(candidate), True, searched)

            try:
                os.chmod(canonical, 0o755)
            except OSError:
                # Non-POSIX filesystems
                pass
            logger.info(f"Staged {tool} from {candidate}")
            return BinaryResolution(str(canonical), True, searched, staged=True)

        if allow_system_fallback:
            system_path = self._probe_system(tool, probe_args)
            if system_path:
                searched.append(system_path)
                return BinaryResolution(system_path, True, searched)
            searched.append(f"{executable_name(tool, self.host)} (PATH)")

        logger.debug(f"{tool} not found; searched {len(searched)} locations")
        return BinaryResolution("", False, searched)

    def require(
        self,
        tool: str,
        allow_system_fallback: bool = True,
        hint: str = "",
        probe_args: Sequence[str] = ("-version",),
    ) -> str:
        """Like resolve() but raises ResolutionError when nothing is found."""
        result = self.resolve(tool, allow_system_fallback, probe_args)
        if not result.found:
            raise ResolutionError(tool, result.searched, hint)
        return result.command

    def _probe_system(self, tool: str, probe_args: Sequence[str]) -> Optional[str]:
        found = shutil.which(executable_name(tool, self.host)) or shutil.which(tool)
        if not found:
            return None
        try:
            completed = subprocess.run(
                [found, *probe_args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=PROBE_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Probe of {found} failed: {e}")
            return None
        return found if completed.returncode == 0 else None


def _is_regular_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False
