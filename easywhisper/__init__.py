"""
EasyWhisper - Orchestration core

Provisions a whisper.cpp toolchain, builds and stages its binaries, and runs
them as subprocesses for batch and live transcription.

Module Structure:
================

easywhisper/
├── __init__.py          # Package initialization
├── config.py            # Configuration, constants, ModelSettings
├── errors.py            # Error taxonomy
├── events.py            # Typed event channels and payloads
├── guard.py             # Single-slot exclusivity guard
├── workspace.py         # Workspace layout and rolling run log
├── system.py            # Host detection, core counts, file manager
├── process_manager.py   # Subprocess wrapper and CommandRunner
├── resolver.py          # Binary lookup and staging
├── downloads.py         # HTTP downloads (requests + tqdm)
├── argsplit.py          # Extra-arguments tokenizer
├── models.py            # Model cache (huggingface_hub / custom URLs)
├── audio.py             # ffmpeg normalization to WAV
├── toolchain/           # Dependency provisioning
│   ├── context.py       # ToolchainContext
│   ├── installers.py    # Per-platform installers
│   └── provisioner.py   # Dependency-group state machine
├── build.py             # Build pipeline
├── transcription.py     # Transcription job queue
├── live.py              # Live streaming session
├── backend.py           # Facade wiring everything together
└── cli.py               # Command line front end

Dependencies:
============
- config.py, errors.py: No internal dependencies (base modules)
- process_manager.py: Depends on events.py, errors.py
- resolver.py: Depends on workspace.py, system.py
- toolchain/: Depends on process_manager.py, downloads.py
- build.py: Depends on toolchain/, guard.py
- transcription.py, live.py: Depend on resolver.py, models.py, process_manager.py
- backend.py: Depends on all of the above

Impact Analysis:
===============
- config.py: Changing constants affects all modules
- process_manager.py: Affects every subprocess (build, ffmpeg, whisper)
- resolver.py: Affects which binaries run
- toolchain/: Affects first-run provisioning only
"""

from .backend import Backend
from .build import BuildPipeline, BuildResult, InstallStatus
from .config import ModelSettings
from .errors import (
    ConflictError,
    DownloadError,
    EasyWhisperError,
    PrivilegeError,
    ProcessError,
    ProvisioningError,
    ResolutionError,
    ValidationError,
)
from .events import Channel, CompileProgressEvent, ConsoleEvent, QueueState, StepState
from .live import LiveRequest, LiveSession
from .models import ModelStore
from .resolver import BinaryResolution, BinaryResolver
from .transcription import QueueItem, TranscriptionQueue
from .workspace import Workspace

__all__ = [
    # Facade
    'Backend',
    # Components
    'BuildPipeline',
    'TranscriptionQueue',
    'LiveSession',
    'BinaryResolver',
    'ModelStore',
    'Workspace',
    # Data
    'ModelSettings',
    'BuildResult',
    'InstallStatus',
    'BinaryResolution',
    'QueueItem',
    'QueueState',
    'LiveRequest',
    'CompileProgressEvent',
    'ConsoleEvent',
    'StepState',
    'Channel',
    # Errors
    'EasyWhisperError',
    'ProcessError',
    'ResolutionError',
    'ProvisioningError',
    'PrivilegeError',
    'ValidationError',
    'ConflictError',
    'DownloadError',
]

__version__ = '1.0.0'
