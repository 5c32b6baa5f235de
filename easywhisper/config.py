"""
Configuration Module - easywhisper/config.py

Central configuration for the EasyWhisper orchestration core.
All constants, paths, and default settings are defined here.

Impact Analysis:
===============
- WORKSPACE_ROOT: Used by workspace.py, every component resolves paths from it
- RESOURCES_DIR, APP_DIR: Used by resolver.py and build.py for bundled binaries
- MODEL_REPO_ID: Used by models.py for standard model downloads
- CANCEL_GRACE_SECONDS: Used by transcription.py and live.py on cancellation
- ModelSettings: The flat settings object passed in by the GUI layer

Dependencies:
============
- None (base module)

Used By:
========
- easywhisper/workspace.py
- easywhisper/resolver.py
- easywhisper/models.py
- easywhisper/audio.py
- easywhisper/build.py
- easywhisper/transcription.py
- easywhisper/live.py
- easywhisper/cli.py

Configuration Override:
=====================
Environment variables can override defaults:
- EASYWHISPER_WORKSPACE: Override the workspace root directory
- EASYWHISPER_RESOURCES_DIR: Override the bundled resources directory
- EASYWHISPER_APP_DIR: Override the application install directory
- EASYWHISPER_MODEL_REPO: Override the Hugging Face repo holding ggml models
"""

import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root is determined dynamically from this file's location
PROJECT_ROOT = Path(__file__).parent.parent

APP_NAME = "EasyWhisperUI"
WORK_ROOT_NAME = "whisper-workspace"


def _user_data_dir() -> Path:
    """Per-user application data directory for the host platform."""
    system = platform.system()
    home = Path.home()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", str(home / "AppData" / "Roaming")))
    elif system == "Darwin":
        base = home / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", str(home / ".local" / "share")))
    return base / APP_NAME


WORKSPACE_ROOT = Path(os.environ.get(
    'EASYWHISPER_WORKSPACE',
    str(_user_data_dir() / WORK_ROOT_NAME)
))

# Prebuilt binaries shipped with the application
RESOURCES_DIR = Path(os.environ.get(
    'EASYWHISPER_RESOURCES_DIR',
    str(PROJECT_ROOT / "resources")
))

APP_DIR = Path(os.environ.get(
    'EASYWHISPER_APP_DIR',
    str(PROJECT_ROOT)
))

BUILD_RESOURCES_NAME = "buildResources"
MAC_BUNDLE_NAME = "mac-bin"

# =============================================================================
# BINARIES
# =============================================================================

BATCH_BINARY = "whisper-cli"
STREAM_BINARY = "whisper-stream"
BINARY_TARGETS = [BATCH_BINARY, STREAM_BINARY]
CODEC_TOOL = "ffmpeg"

# =============================================================================
# ENGINE SOURCE
# =============================================================================

WHISPER_SOURCE_REPO = "https://github.com/ggerganov/whisper.cpp.git"
WHISPER_SOURCE_ARCHIVE = "https://github.com/ggerganov/whisper.cpp/archive/refs/heads/master.zip"
SOURCE_DIR_NAME = "whisper.cpp"

MSYS_INSTALLER_URL = (
    "https://github.com/msys2/msys2-installer/releases/latest/download/"
    "msys2-base-x86_64-latest.sfx.exe"
)

# =============================================================================
# MODEL CONFIGURATION
# =============================================================================

MODEL_REPO_ID = os.environ.get('EASYWHISPER_MODEL_REPO', "ggerganov/whisper.cpp")
MODEL_BASE_URL = f"https://huggingface.co/{MODEL_REPO_ID}/resolve/main"

# Identifiers offered by the model dropdown; "custom" needs a path or URL
STANDARD_MODELS = [
    "large-v3",
    "large-v3-turbo",
    "medium",
    "medium.en",
    "small",
    "small.en",
    "tiny",
    "tiny.en",
    "base",
    "base.en",
]
CUSTOM_MODEL_SENTINEL = "custom"
CUSTOM_MODEL_FALLBACK_NAME = "custom-model.bin"

DEFAULT_MODEL = "medium.en"
DEFAULT_LANGUAGE = "en"
DEFAULT_EXTRA_ARGS = "-tp 0.0 -mc 64 -et 3.0"

# =============================================================================
# PROCESS / NETWORK LIMITS
# =============================================================================

# Seconds to wait for a terminated child before giving up (no forced kill)
CANCEL_GRACE_SECONDS = 1.5

MAX_REDIRECTS = 5
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DOWNLOAD_TIMEOUT = (15, 120)

# =============================================================================
# MEDIA NORMALIZATION
# =============================================================================

TARGET_EXTENSION = ".wav"
TARGET_SAMPLE_RATE = 44100
TARGET_CHANNELS = 1
MAX_CODEC_THREADS = 8

# =============================================================================
# LIVE DEFAULTS
# =============================================================================

DEFAULT_STEP_MS = 500
DEFAULT_LENGTH_MS = 5000


# =============================================================================
# SETTINGS OBJECT
# =============================================================================

@dataclass
class ModelSettings:
    """Flat settings object handed over by the GUI layer."""
    model: str = DEFAULT_MODEL
    language: str = DEFAULT_LANGUAGE
    cpu_only: bool = False
    output_txt: bool = True
    output_srt: bool = False
    open_after_complete: bool = False
    extra_args: str = ""
    custom_model_path: Optional[str] = None
    custom_model_url: Optional[str] = None
