"""
Build Pipeline Module - easywhisper/build.py

Turns a bare machine into one with working whisper binaries in the
workspace ``bin/`` directory.

Impact Analysis:
===============
- BuildPipeline.compile(): The build/stage operation. One run at a time;
  a concurrent call is refused, never queued.
- BuildPipeline.ensure_dependencies(): Provisioning only (first launch)
- BuildPipeline.check_install(): Install status for the GUI
- BuildPipeline.uninstall(): Deletes the whole workspace

Dependencies:
============
- easywhisper/toolchain/ (Provisioner, installer_for_host)
- easywhisper/process_manager.py (CommandRunner)
- easywhisper/downloads.py (source snapshot when git is unavailable)
- easywhisper/guard.py (ExclusiveSlot)

Used By:
========
- easywhisper/backend.py
- easywhisper/cli.py (via Backend)

Steps:
=====
prepare -> toolchain -> packages -> source -> configure -> build -> copy
followed by ``completed``. Any failure ends the run with one ``failed``
error event; the workspace stays as it is so a retry can resume.

Short-circuits:
==============
- Prebuilt bundle for the host: copied into bin/ (always refreshed)
- Both binaries already in bin/ and not forced: one ``check-cache`` event
"""

import logging
import os
import shutil
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from . import config
from .downloads import download_file
from .errors import EasyWhisperError, ProvisioningError
from .events import Channel, CompileProgressEvent, ConsoleEvent, StepState, console_channel
from .guard import ExclusiveSlot
from .process_manager import CommandRunner
from .system import MACOS, WINDOWS, build_job_count, executable_name, host_platform
from .toolchain import ProvisionResult, Provisioner, ToolchainContext, installer_for_host
from .workspace import Workspace

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Compilation already in progress."
SHARED_LIBRARY_PATTERNS = ["*.dll", "*.so", "*.so.*", "*.dylib"]

ProvisionerFactory = Callable[[CommandRunner, Channel], Provisioner]


@dataclass
class BuildResult:
    success: bool
    output_dir: Optional[str] = None
    error: Optional[str] = None


@dataclass
class InstallStatus:
    installed: bool
    output_dir: Optional[str] = None


class BuildPipeline:
    """
    Sequential build state machine guarded by an ExclusiveSlot.

    Example:
        >>> pipeline = BuildPipeline(Workspace())
        >>> pipeline.progress.subscribe(print)
        >>> pipeline.compile()
        BuildResult(success=True, output_dir='.../bin', error=None)
    """

    def __init__(
        self,
        workspace: Workspace,
        provisioner_factory: Optional[ProvisionerFactory] = None,
        runner: Optional[CommandRunner] = None,
        bundle_dirs: Optional[Sequence[Path]] = None,
        host: Optional[str] = None,
        downloader: Callable[..., Path] = download_file,
        slot: Optional[ExclusiveSlot] = None,
    ):
        self.workspace = workspace
        self.host = host or host_platform()
        self.progress: Channel[CompileProgressEvent] = Channel("progress")
        self.console: Channel[ConsoleEvent] = console_channel()
        self.runner = runner or CommandRunner("compile", self.console)
        self.provisioner_factory = provisioner_factory or self._default_provisioner
        self.bundle_dirs = [Path(p) for p in bundle_dirs] if bundle_dirs is not None else self._default_bundle_dirs()
        self.downloader = downloader
        self.slot = slot or ExclusiveSlot("compile", CONFLICT_MESSAGE)
        self._provisioner: Optional[Provisioner] = None

    # ==================== Public operations ====================

    @property
    def busy(self) -> bool:
        return self.slot.busy

    def compile(self, force: bool = False) -> BuildResult:
        """
        Build and stage whisper-cli and whisper-stream.

        Args:
            force: Purge toolchain and build directory, refetch sources and
                repeat every step

        Returns:
            BuildResult; errors are reported in it, never raised
        """
        if not self.slot.try_acquire("compile"):
            logger.info("Compile requested while another run is active")
            return BuildResult(False, error=CONFLICT_MESSAGE)
        try:
            return self._compile(force)
        finally:
            self.slot.release()

    def ensure_dependencies(self, force: bool = False) -> BuildResult:
        """Run only the provisioning steps, under the same guard as compile()."""
        if not self.slot.try_acquire("dependencies"):
            return BuildResult(False, error=CONFLICT_MESSAGE)
        try:
            self.runner.run_log = self.workspace.run_logger(reset=True)
            self._step("prepare", "Preparing workspace", self.workspace.ensure)
            self._step("toolchain", "Ensuring build toolchain", lambda: self._provision(force, strict=True))
            self._step("packages", "Installing build packages", self._provisioner.ensure_runtime_packages)
        except Exception as e:
            return self._fail(e, "Dependency installation failed.")

        self._emit_progress("completed", "Dependencies ready.", 100, StepState.SUCCESS)
        return BuildResult(True, output_dir=str(self.workspace.toolchain_dir))

    def check_install(self) -> InstallStatus:
        if self.has_binaries():
            return InstallStatus(True, str(self.workspace.bin_dir))
        return InstallStatus(False)

    def uninstall(self) -> BuildResult:
        """Remove the workspace root recursively. Refused while a build runs."""
        if not self.slot.try_acquire("uninstall"):
            return BuildResult(False, error=CONFLICT_MESSAGE)
        try:
            self._emit_progress("uninstall", "Removing whisper workspace", 0, StepState.RUNNING)
            self.workspace.remove()
            self._emit_progress("uninstall", "Whisper workspace removed.", 100, StepState.PENDING)
            self.emit(f"Removed {self.workspace.root}")
            return BuildResult(True)
        finally:
            self.slot.release()

    def has_binaries(self) -> bool:
        return all(
            (self.workspace.bin_dir / executable_name(target, self.host)).is_file()
            for target in config.BINARY_TARGETS
        )

    def prebuilt_bundle(self) -> Optional[Path]:
        """First bundle directory holding both binaries for this host."""
        for directory in self.bundle_dirs:
            if all((directory / executable_name(t, self.host)).is_file() for t in config.BINARY_TARGETS):
                return directory
        return None

    # ==================== Pipeline ====================

    def _compile(self, force: bool) -> BuildResult:
        bin_dir = self.workspace.bin_dir

        bundle = self.prebuilt_bundle()
        if bundle is not None:
            try:
                self.workspace.ensure()
                copied = self._stage_bundle(bundle)
            except OSError as e:
                return self._fail(e)
            self.emit(f"Staged {copied} bundled files from {bundle}")
            self._emit_progress("prebuilt", "Bundled Whisper binaries staged.", 100, StepState.SUCCESS)
            return BuildResult(True, output_dir=str(bin_dir))

        if self.has_binaries() and not force:
            self._emit_progress("check-cache", "Whisper binaries already built; skipping.", 100, StepState.SUCCESS)
            return BuildResult(True, output_dir=str(bin_dir))

        try:
            self.workspace.ensure()
            self.runner.run_log = self.workspace.run_logger(reset=True)
            self._step("prepare", "Preparing workspace", lambda: self._prepare(force))
            context = self._step("toolchain", "Ensuring build toolchain", lambda: self._provision(force).context)
            self._step("packages", "Installing build packages", self._provisioner.ensure_runtime_packages)
            self._step("source", "Fetching whisper.cpp sources", lambda: self._fetch_source(context, force))
            self._step("configure", "Configuring CMake project", lambda: self._configure(context))
            self._step("build", "Building whisper binaries", lambda: self._build(context))
            self._step("copy", "Copying artifacts", lambda: self._copy(context))
        except Exception as e:
            return self._fail(e)

        self._emit_progress("completed", "Whisper binaries ready.", 100, StepState.SUCCESS)
        return BuildResult(True, output_dir=str(bin_dir))

    def _prepare(self, force: bool) -> None:
        self.workspace.ensure()
        if force:
            for directory in [self.workspace.toolchain_dir, self.workspace.build_dir]:
                if directory.exists():
                    self.emit(f"Purging {directory}")
                    shutil.rmtree(directory)
            self.workspace.toolchain_dir.mkdir(parents=True, exist_ok=True)

    def _provision(self, force: bool, strict: bool = False) -> ProvisionResult:
        self._provisioner = self.provisioner_factory(self.runner, self.progress)
        result = self._provisioner.ensure(force=force)
        if result.context is None:
            raise ProvisioningError("toolchain", result.error or "Build toolchain unavailable")
        if not result.success:
            if strict:
                raise ProvisioningError(",".join(result.failed_groups) or "dependencies", result.error)
            self.emit(f"Continuing without: {', '.join(result.failed_groups)}")
        return result

    def _fetch_source(self, context: ToolchainContext, force: bool) -> None:
        source_dir = self.workspace.source_dir
        if not force and (source_dir / "CMakeLists.txt").is_file():
            self.emit("Reusing existing whisper.cpp sources")
            return

        if source_dir.exists():
            shutil.rmtree(source_dir)

        if context.vcs_tool:
            self.runner.run(
                context.vcs_tool,
                ["clone", "--depth", "1", config.WHISPER_SOURCE_REPO, str(source_dir)],
                env=context.env,
                label="source",
            )
        else:
            self.emit("git not available; downloading source snapshot")
            self._download_snapshot(source_dir)

        if not (source_dir / "CMakeLists.txt").is_file():
            raise EasyWhisperError(f"whisper.cpp sources incomplete: {source_dir / 'CMakeLists.txt'} missing")

    def _download_snapshot(self, source_dir: Path) -> None:
        downloads = self.workspace.downloads_dir
        archive = downloads / "whisper.cpp-master.zip"
        extract_dir = downloads / "whisper-src"
        self.downloader(config.WHISPER_SOURCE_ARCHIVE, archive, scratch_dir=downloads)

        if extract_dir.exists():
            shutil.rmtree(extract_dir)
        try:
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(extract_dir)
        except zipfile.BadZipFile as e:
            raise EasyWhisperError(f"Source archive is corrupt: {archive} ({e})") from e

        roots = [p for p in extract_dir.iterdir() if p.is_dir()]
        if not roots:
            raise EasyWhisperError("whisper.cpp archive missing root folder")
        source_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(roots[0]), str(source_dir))
        archive.unlink()
        shutil.rmtree(extract_dir, ignore_errors=True)

    def _configure(self, context: ToolchainContext) -> None:
        build_dir = self.workspace.build_dir
        build_dir.mkdir(parents=True, exist_ok=True)

        if context.gpu_enabled:
            self.emit(f"GPU backend enabled: {context.gpu_backend}")
        else:
            self.emit("GPU SDK not detected; building CPU-only binaries.")

        args = [
            "-S", str(self.workspace.source_dir),
            "-B", str(build_dir),
            *context.cmake_arguments(),
            "-DWHISPER_SDL2=ON",
            "-DWHISPER_BUILD_EXAMPLES=ON",
            "-DCMAKE_BUILD_TYPE=Release",
        ]
        self.runner.run(context.build_generator, args, env=context.env, label="configure")

    def _build(self, context: ToolchainContext) -> None:
        args = [
            "--build", str(self.workspace.build_dir),
            "--target", *config.BINARY_TARGETS,
            "--config", "Release",
            "-j", str(build_job_count()),
        ]
        self.runner.run(context.build_generator, args, env=context.env, label="build")

    def _copy(self, context: ToolchainContext) -> None:
        bin_dir = self.workspace.bin_dir
        bin_dir.mkdir(parents=True, exist_ok=True)
        build_bin = self.workspace.build_dir / "bin"

        for target in config.BINARY_TARGETS:
            exe = executable_name(target, self.host)
            found = next((p for p in [build_bin / exe, build_bin / "Release" / exe] if p.is_file()), None)
            if found is None:
                raise EasyWhisperError(f"Build output missing: {build_bin / exe}")
            self._install_file(found, bin_dir / exe)

        libraries: List[Path] = list(self._provisioner.installer.runtime_libraries(context))
        if build_bin.is_dir():
            for pattern in SHARED_LIBRARY_PATTERNS:
                libraries += sorted(build_bin.glob(pattern))
        for library in libraries:
            if not library.is_file():
                raise EasyWhisperError(f"Runtime library missing: {library}")
            self._install_file(library, bin_dir / library.name)

    # ==================== Helpers ====================

    def _stage_bundle(self, bundle: Path) -> int:
        count = 0
        for item in bundle.iterdir():
            if item.is_file():
                self._install_file(item, self.workspace.bin_dir / item.name)
                count += 1
        return count

    def _install_file(self, source: Path, target: Path) -> None:
        shutil.copyfile(source, target)
        if self.host != WINDOWS:
            mode = os.stat(target).st_mode
            os.chmod(target, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH | stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)

    def _step(self, step: str, message: str, action: Callable):
        self._emit_progress(step, message, 0, StepState.RUNNING)
        self.emit(f"[{step}] {message}")
        value = action()
        self._emit_progress(step, message, 100, StepState.SUCCESS)
        return value

    def _fail(self, error: Exception, message: str = "Compilation failed.") -> BuildResult:
        if isinstance(error, (EasyWhisperError, OSError)):
            logger.error(f"{message} {error}")
        else:
            logger.exception(f"{message} Unexpected error")
        self.emit(f"{message} {error}")
        self._emit_progress("failed", message, 100, StepState.ERROR, error=str(error))
        return BuildResult(False, error=str(error))

    def _emit_progress(self, step: str, message: str, progress: int, state: StepState, error: Optional[str] = None) -> None:
        self.progress.publish(CompileProgressEvent(step, message, progress, state, error))

    def emit(self, message: str) -> None:
        self.runner.emit(message)

    def _default_provisioner(self, runner: CommandRunner, progress: Channel) -> Provisioner:
        installer = installer_for_host(self.workspace, self.host)
        return Provisioner(installer, self.workspace, runner, progress)

    def _default_bundle_dirs(self) -> List[Path]:
        if self.host != MACOS:
            return []
        app_resources = config.APP_DIR / config.BUILD_RESOURCES_NAME
        return [config.RESOURCES_DIR / config.MAC_BUNDLE_NAME, app_resources / config.MAC_BUNDLE_NAME]
