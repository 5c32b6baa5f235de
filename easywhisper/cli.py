#!/usr/bin/env python3
"""
EasyWhisper command line front end

Drives the orchestration core without the desktop shell: provisioning,
building, batch transcription, live transcription and the model cache.

Examples:
  easywhisper deps                       # install toolchain, GPU SDK, ffmpeg, git
  easywhisper build --force              # rebuild whisper-cli / whisper-stream
  easywhisper status
  easywhisper transcribe talk.mp3 ./recordings --model small.en --srt
  easywhisper live --model base.en --step 500 --length 5000
  easywhisper models list
  easywhisper models download tiny.en
  easywhisper uninstall --yes
"""

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List

from . import __version__, config
from .backend import Backend
from .config import ModelSettings
from .errors import EasyWhisperError
from .events import CompileProgressEvent, ConsoleEvent, StepState
from .live import STOPPED, LiveRequest
from .workspace import Workspace

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ['.mp3', '.wav', '.m4a', '.flac', '.ogg', '.webm', '.mp4', '.mkv', '.mov', '.aac']


class Colors:
    """ANSI color codes for terminal output"""
    HEADER = '\033[95m'
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def print_header(text: str):
    print(f"\n{Colors.HEADER}{Colors.BOLD}{'='*60}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}{text.center(60)}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}{'='*60}{Colors.ENDC}\n")


def print_info(text: str):
    print(f"{Colors.OKBLUE}ℹ {text}{Colors.ENDC}")


def print_success(text: str):
    print(f"{Colors.OKGREEN}✓ {text}{Colors.ENDC}")


def print_warning(text: str):
    print(f"{Colors.WARNING}⚠ {text}{Colors.ENDC}")


def print_error(text: str):
    print(f"{Colors.FAIL}✗ {text}{Colors.ENDC}")


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def find_media_files(inputs: List[str]) -> List[Path]:
    """
    Expand files and directories into a list of media files.

    Directories are scanned (non-recursively) for SUPPORTED_EXTENSIONS;
    explicitly named files are taken as given.
    """
    files: List[Path] = []
    for item in inputs:
        path = Path(item)
        if path.is_file():
            files.append(path)
        elif path.is_dir():
            files.extend(sorted(p for p in path.iterdir()
                                if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS))
        else:
            print_error(f"Path {item} does not exist")
    return files


# =============================================================================
# EVENT PRINTERS
# =============================================================================

def print_console(event: ConsoleEvent):
    print(f"{Colors.OKCYAN}[{event.source}]{Colors.ENDC} {event.message}")


def print_progress(event: CompileProgressEvent):
    if event.state == StepState.RUNNING:
        print_info(f"{event.step}: {event.message}")
    elif event.state == StepState.SUCCESS:
        print_success(f"{event.step}: {event.message}")
    elif event.state == StepState.ERROR:
        print_error(f"{event.step}: {event.message} {event.error or ''}".rstrip())
    else:
        print_warning(f"{event.step}: {event.message}")


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_deps(backend: Backend, args) -> int:
    print_header("Installing dependencies")
    result = backend.ensure_dependencies(force=args.force)
    return 0 if result.success else 1


def cmd_build(backend: Backend, args) -> int:
    print_header("Building whisper.cpp")
    result = backend.compile(force=args.force)
    if result.success:
        print_success(f"Binaries in {result.output_dir}")
        return 0
    print_error(result.error or "Build failed")
    return 1


def cmd_status(backend: Backend, args) -> int:
    status = backend.check_install()
    print_info(f"Workspace: {backend.workspace.root}")
    if status.installed:
        print_success(f"Whisper binaries installed in {status.output_dir}")
        return 0
    print_warning("Whisper binaries not installed. Run: easywhisper build")
    return 1


def cmd_uninstall(backend: Backend, args) -> int:
    if not args.yes:
        answer = input(f"Delete {backend.workspace.root} and everything in it? [y/N]: ").strip().lower()
        if answer not in ('y', 'yes'):
            print_info("Cancelled")
            return 1
    result = backend.uninstall()
    if result.success:
        print_success("Workspace removed")
        return 0
    print_error(result.error or "Uninstall failed")
    return 1


def settings_from_args(args) -> ModelSettings:
    return ModelSettings(
        model=args.model,
        language=args.language,
        cpu_only=args.cpu_only,
        output_txt=not getattr(args, 'no_txt', False),
        output_srt=getattr(args, 'srt', False),
        open_after_complete=getattr(args, 'open', False),
        extra_args=getattr(args, 'extra_args', ""),
        custom_model_path=args.custom_model_path,
        custom_model_url=getattr(args, 'custom_model_url', None),
    )


def cmd_transcribe(backend: Backend, args) -> int:
    files = find_media_files(args.inputs)
    if not files:
        print_error("No supported media files found!")
        return 1

    failures = []
    backend.console.subscribe(
        lambda e: failures.append(e.message) if e.message.startswith("Error processing") else None
    )

    print_header(f"Transcribing {len(files)} file(s)")
    backend.enqueue([str(f) for f in files], settings_from_args(args))
    try:
        backend.transcription.wait_idle()
    except KeyboardInterrupt:
        print_warning("Cancelling...")
        backend.cancel_all()
        backend.transcription.wait_idle(timeout=5)
        return 130

    if failures:
        print_error(f"{len(failures)} of {len(files)} file(s) failed")
        return 1
    print_success(f"All {len(files)} file(s) transcribed")
    return 0


def cmd_live(backend: Backend, args) -> int:
    stopped = threading.Event()
    backend.live_text.subscribe(lambda text: print(f"{Colors.BOLD}{text}{Colors.ENDC}"))
    backend.live_state.subscribe(lambda state: stopped.set() if state == STOPPED else None)

    request = LiveRequest(settings_from_args(args), step_ms=args.step, length_ms=args.length)
    backend.start_live(request)
    print_info("Listening. Press Ctrl+C to stop.")
    try:
        stopped.wait()
    except KeyboardInterrupt:
        backend.stop_live()
    return 0


def cmd_models(backend: Backend, args) -> int:
    store = backend.models
    if args.action == 'list':
        cached = store.list_cached()
        if not cached:
            print_info(f"No models in {store.models_dir}")
        for model in cached:
            tag = "" if model['is_standard'] else " (custom)"
            print(f"  {model['name']:<32} {model['size_mb']:>9.1f} MB{tag}")
        print_info(f"Available: {', '.join(config.STANDARD_MODELS)}")
        return 0

    if not args.name:
        print_error(f"models {args.action} requires a model name")
        return 2

    if args.action == 'download':
        path = store.resolve(ModelSettings(model=args.name), print_info)
        print_success(f"Model ready: {path}")
        return 0

    result = store.delete(args.name)
    if result['success']:
        print_success(f"Deleted {args.name}")
        return 0
    print_error(result['error'])
    return 1


COMMANDS = {
    'deps': cmd_deps,
    'build': cmd_build,
    'status': cmd_status,
    'uninstall': cmd_uninstall,
    'transcribe': cmd_transcribe,
    'live': cmd_live,
    'models': cmd_models,
}


def add_model_options(parser: argparse.ArgumentParser):
    parser.add_argument('--model', default=config.DEFAULT_MODEL,
                        help=f'Model id or "custom" (default: {config.DEFAULT_MODEL})')
    parser.add_argument('--language', '-l', default=config.DEFAULT_LANGUAGE,
                        help=f'Language code (default: {config.DEFAULT_LANGUAGE})')
    parser.add_argument('--cpu-only', action='store_true', help='Pass --no-gpu to whisper')
    parser.add_argument('--custom-model-path', help='Local ggml model file')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='easywhisper',
        description='Provision, build and run whisper.cpp',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split('Examples:', 1)[1] if __doc__ else None,
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--workspace', help=f'Workspace root (default: {config.WORKSPACE_ROOT})')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    deps = sub.add_parser('deps', help='Install build dependencies')
    deps.add_argument('--force', action='store_true', help='Reinstall every dependency group')

    build = sub.add_parser('build', help='Build and stage the whisper binaries')
    build.add_argument('--force', action='store_true', help='Purge toolchain and build directory first')

    sub.add_parser('status', help='Show install status')

    uninstall = sub.add_parser('uninstall', help='Delete the workspace')
    uninstall.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')

    transcribe = sub.add_parser('transcribe', help='Transcribe files or folders')
    transcribe.add_argument('inputs', nargs='+', help='Media files or directories')
    add_model_options(transcribe)
    transcribe.add_argument('--custom-model-url', help='Download the model from this URL')
    transcribe.add_argument('--srt', action='store_true', help='Also write .srt subtitles')
    transcribe.add_argument('--no-txt', action='store_true', help='Do not write a .txt transcript')
    transcribe.add_argument('--open', action='store_true', help='Reveal the transcript when done')
    transcribe.add_argument('--extra-args', default=config.DEFAULT_EXTRA_ARGS,
                            help=f'Extra whisper-cli arguments (default: "{config.DEFAULT_EXTRA_ARGS}")')

    live = sub.add_parser('live', help='Live transcription from the microphone')
    add_model_options(live)
    live.add_argument('--step', type=int, default=config.DEFAULT_STEP_MS, help='Step in ms')
    live.add_argument('--length', type=int, default=config.DEFAULT_LENGTH_MS, help='Window length in ms')

    models = sub.add_parser('models', help='Manage cached models')
    models.add_argument('action', choices=['list', 'download', 'delete'], nargs='?', default='list')
    models.add_argument('name', nargs='?', help='Model id or file name')

    return parser


def main(argv: List[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    backend = Backend(Workspace(args.workspace) if args.workspace else None)
    backend.console.subscribe(print_console)
    backend.progress.subscribe(print_progress)

    try:
        return COMMANDS[args.command](backend, args)
    except EasyWhisperError as e:
        print_error(str(e))
        return 1
    finally:
        backend.shutdown()


if __name__ == "__main__":
    sys.exit(main())
