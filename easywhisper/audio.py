"""
Audio Normalization Module - easywhisper/audio.py

Stage 1 of a transcription job: bring any input media into the PCM WAV
format the batch binary expects.

Impact Analysis:
===============
- MediaNormalizer.ensure_wav(): Every queued job passes through here.
  A .wav input is used as is; anything else is converted next to the
  source file as <name>.wav (mono, 16-bit PCM, TARGET_SAMPLE_RATE).
- ffmpeg_arguments(): Pure argument builder, shared with tests

Dependencies:
============
- easywhisper/config.py (CODEC_TOOL, TARGET_EXTENSION, TARGET_SAMPLE_RATE, TARGET_CHANNELS)
- easywhisper/resolver.py (locating ffmpeg)
- easywhisper/process_manager.py (running ffmpeg)
- easywhisper/system.py (codec_thread_count)

Used By:
========
- easywhisper/transcription.py

External Dependencies:
====================
- ffmpeg executable (bundled, staged, or on PATH)
"""

import logging
import time
from pathlib import Path
from typing import List, Optional, Union

from .config import CODEC_TOOL, TARGET_CHANNELS, TARGET_EXTENSION, TARGET_SAMPLE_RATE
from .process_manager import CommandRunner
from .resolver import BinaryResolver
from .system import codec_thread_count

logger = logging.getLogger(__name__)

MISSING_CODEC_HINT = "Install dependencies or rerun the compiler."


def wav_target(source: Path) -> Path:
    """Conversion target for ``source``: same directory, same stem, .wav"""
    return source.with_name(f"{source.stem}{TARGET_EXTENSION}")


def ffmpeg_arguments(source: Path, target: Path, threads: Optional[int] = None) -> List[str]:
    """
    Argument vector for converting ``source`` into ``target``.

    Video, subtitle and data streams are dropped along with all metadata;
    progress goes to stderr (merged into the console by the runner).
    """
    threads = str(threads or codec_thread_count())
    return [
        "-y",
        "-hide_banner",
        "-loglevel", "warning",
        "-progress", "pipe:2",
        "-nostats",
        "-threads", threads,
        "-filter_threads", threads,
        "-filter_complex_threads", threads,
        "-i", str(source),
        "-vn", "-sn", "-dn",
        "-map_metadata", "-1",
        "-ac", str(TARGET_CHANNELS),
        "-ar", str(TARGET_SAMPLE_RATE),
        "-c:a", "pcm_s16le",
        str(target),
    ]


class MediaNormalizer:
    """Converts input media to WAV through ffmpeg."""

    def __init__(self, resolver: BinaryResolver, runner: CommandRunner):
        self.resolver = resolver
        self.runner = runner

    def ensure_wav(self, source: Union[str, Path]) -> Path:
        """
        Path of a WAV version of ``source``, converting when needed.

        Raises:
            ResolutionError: ffmpeg not found at any searched location
            ProcessError: ffmpeg ran but failed
        """
        source = Path(source)
        if source.suffix.lower() == TARGET_EXTENSION:
            self.runner.emit("Input already WAV, skipping conversion.")
            return source

        target = wav_target(source)
        self.runner.emit(f"Converting to WAV: {target.name}")
        ffmpeg = self.resolver.require(CODEC_TOOL, hint=MISSING_CODEC_HINT)

        started = time.time()
        self.runner.run(ffmpeg, ffmpeg_arguments(source, target))
        elapsed = time.time() - started
        self.runner.emit(f"FFmpeg finished ({elapsed:.1f}s): {target.name}")
        return target
