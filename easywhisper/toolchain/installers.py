"""
Toolchain Installers Module - easywhisper/toolchain/installers.py

One installer per host platform family. Each knows how to probe the
dependency groups, which packages satisfy them, how to install those
packages, and how to describe the resulting toolchain.

Impact Analysis:
===============
- Installer.probe(): Drives the per-group state machine in provisioner.py
- Installer.install(): The only place package managers are invoked
- Installer.build_context(): Produces the ToolchainContext used by build.py
- Installer.runtime_libraries(): Shared libraries copied next to the binaries

Dependencies:
============
- easywhisper/config.py (MSYS_INSTALLER_URL)
- easywhisper/downloads.py (MSYS2 self-extracting archive)
- easywhisper/process_manager.py (CommandRunner)
- easywhisper/system.py (host_platform, is_privileged)
- easywhisper/workspace.py (toolchain_dir, downloads_dir)

Used By:
========
- easywhisper/toolchain/provisioner.py
- easywhisper/build.py (via installer_for_host)

Implementations:
===============
- MsysInstaller    Windows, MSYS2 tree under <workspace>/toolchain/msys64
- AptInstaller     Debian / Ubuntu
- DnfInstaller     Fedora / RHEL
- PacmanInstaller  Arch
- BrewInstaller    macOS (Homebrew, Metal needs no SDK)

Linux installers escalate privileges in this order: already root,
``sudo -n`` (only if it works without a password), ``pkexec``. When none
is available a PrivilegeError carries the command to run by hand.
"""

import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .. import config
from ..downloads import download_file
from ..errors import DownloadError, PrivilegeError, ProcessError, ProvisioningError
from ..process_manager import CommandRunner
from ..system import LINUX, MACOS, WINDOWS, host_platform, is_privileged
from ..workspace import Workspace
from .context import METAL, VULKAN, ToolchainContext

logger = logging.getLogger(__name__)

# =============================================================================
# DEPENDENCY GROUPS
# =============================================================================

TOOLCHAIN = "toolchain"
GPU_SDK = "gpu_sdk"
CODEC = "codec"
VCS = "vcs"
DEPENDENCY_GROUPS = [TOOLCHAIN, GPU_SDK, CODEC, VCS]

GROUP_LABELS = {
    TOOLCHAIN: "Compiler toolchain",
    GPU_SDK: "GPU compute SDK",
    CODEC: "FFmpeg",
    VCS: "Git",
}

RUNTIME = "runtime"

Which = Callable[..., Optional[str]]


class Installer:
    """
    Base class for a host's package installation mechanism.

    Subclasses fill in ``group_packages`` / ``runtime_package_list`` and
    override ``install_argv`` (or ``install`` entirely).
    """

    name = "generic"
    group_packages: Dict[str, List[str]] = {}
    runtime_package_list: List[str] = []
    vulkan_header = Path("/usr/include/vulkan/vulkan.h")

    def __init__(
        self,
        workspace: Workspace,
        which: Which = shutil.which,
        privileged: Callable[[], bool] = is_privileged,
    ):
        self.workspace = workspace
        self.which = which
        self.privileged = privileged

    # ==================== Probes ====================

    def find(self, *names: str) -> Optional[str]:
        """First of ``names`` found on the search path."""
        search_path = self.search_path()
        for name in names:
            found = self.which(name, path=search_path) if search_path else self.which(name)
            if found:
                return found
        return None

    def search_path(self) -> Optional[str]:
        """PATH used for probes; None means the process PATH."""
        return None

    def probe(self, group: str) -> bool:
        if group == TOOLCHAIN:
            return all([
                self.find("cc", "gcc", "clang"),
                self.find("c++", "g++", "clang++"),
                self.find("cmake"),
            ])
        if group == GPU_SDK:
            return self.gpu_sdk_root() is not None
        if group == CODEC:
            return self.find("ffmpeg") is not None
        if group == VCS:
            return self.find("git") is not None
        raise ValueError(f"Unknown dependency group: {group}")

    def gpu_sdk_root(self) -> Optional[str]:
        sdk = os.environ.get("VULKAN_SDK")
        if sdk and Path(sdk).is_dir():
            return sdk
        if self.find("glslc") and self.vulkan_header.is_file():
            return str(self.vulkan_header.parent.parent.parent)
        return None

    def gpu_backend(self) -> Optional[str]:
        return VULKAN if self.gpu_sdk_root() else None

    # ==================== Packages ====================

    def packages_for(self, groups: Sequence[str]) -> List[str]:
        packages: List[str] = []
        for group in groups:
            source = self.runtime_package_list if group == RUNTIME else self.group_packages.get(group, [])
            for package in source:
                if package not in packages:
                    packages.append(package)
        return packages

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        raise NotImplementedError

    def manual_command(self, packages: Sequence[str]) -> str:
        return " ".join(shlex.quote(a) for a in ["sudo", *self.install_argv(packages)])

    def install(self, groups: Sequence[str], runner: CommandRunner) -> None:
        """
        Install every package the given groups need, in one transaction.

        Raises:
            PrivilegeError: No way to run the package manager as root
            ProvisioningError: The package manager failed
        """
        packages = self.packages_for(groups)
        if not packages:
            return
        label = ",".join(groups)
        argv = self.elevate(self.install_argv(packages), label, packages)
        runner.emit(f"Installing {' '.join(packages)}")
        try:
            runner.run(argv[0], argv[1:], quiet=True, label=label)
        except ProcessError as e:
            raise ProvisioningError(label, str(e), command=" ".join(argv)) from e

    def runtime_packages_satisfied(self) -> bool:
        return self.find("sdl2-config") is not None

    def install_runtime_packages(self, runner: CommandRunner) -> None:
        self.install([RUNTIME], runner)

    # ==================== Privileges ====================

    def elevate(self, argv: List[str], group: str, packages: Sequence[str]) -> List[str]:
        """Prefix ``argv`` with whatever grants root, or raise PrivilegeError."""
        if self.privileged():
            return argv
        sudo = self.which("sudo")
        if sudo and self.sudo_without_password(sudo):
            return [sudo, "-n", *argv]
        pkexec = self.which("pkexec")
        if pkexec:
            return [pkexec, *argv]
        manual = self.manual_command(packages)
        raise PrivilegeError(
            group,
            f"Administrator privileges are required to install packages. Run manually: {manual}",
            command=manual,
        )

    def sudo_without_password(self, sudo: str) -> bool:
        try:
            completed = subprocess.run(
                [sudo, "-n", "true"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return completed.returncode == 0

    # ==================== Context ====================

    def build_context(self) -> ToolchainContext:
        compiler = self.find("cc", "gcc", "clang")
        cxx_compiler = self.find("c++", "g++", "clang++")
        archiver = self.find("ar", "llvm-ar")
        cmake = self.find("cmake")
        if not (compiler and cxx_compiler and archiver and cmake):
            missing = [name for name, value in [
                ("C compiler", compiler), ("C++ compiler", cxx_compiler),
                ("archiver", archiver), ("cmake", cmake)] if not value]
            raise ProvisioningError(TOOLCHAIN, f"Missing after provisioning: {', '.join(missing)}")

        return ToolchainContext.create(
            compiler=compiler,
            cxx_compiler=cxx_compiler,
            archiver=archiver,
            build_generator=cmake,
            make_program=self.find("ninja"),
            codec_tool=self.find("ffmpeg"),
            vcs_tool=self.find("git"),
            gpu_sdk_root=self.gpu_sdk_root(),
            gpu_backend=self.gpu_backend(),
            extra_cmake_args=["-DBUILD_SHARED_LIBS=OFF"],
        )

    def runtime_libraries(self, context: ToolchainContext) -> List[Path]:
        return []


# =============================================================================
# LINUX
# =============================================================================

class AptInstaller(Installer):
    name = "apt"
    group_packages = {
        TOOLCHAIN: ["build-essential", "cmake", "ninja-build"],
        GPU_SDK: ["libvulkan-dev", "glslc"],
        CODEC: ["ffmpeg"],
        VCS: ["git"],
    }
    runtime_package_list = ["libsdl2-dev"]

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        script = "apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y " + " ".join(packages)
        return ["sh", "-c", script]

    def manual_command(self, packages: Sequence[str]) -> str:
        return f"sudo apt-get update && sudo apt-get install -y {' '.join(packages)}"


class DnfInstaller(Installer):
    name = "dnf"
    group_packages = {
        TOOLCHAIN: ["gcc", "gcc-c++", "make", "cmake", "ninja-build"],
        GPU_SDK: ["vulkan-headers", "vulkan-loader-devel", "glslc"],
        CODEC: ["ffmpeg-free"],
        VCS: ["git"],
    }
    runtime_package_list = ["SDL2-devel"]

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return ["dnf", "install", "-y", *packages]


class PacmanInstaller(Installer):
    name = "pacman"
    group_packages = {
        TOOLCHAIN: ["base-devel", "cmake", "ninja"],
        GPU_SDK: ["vulkan-headers", "vulkan-icd-loader", "shaderc"],
        CODEC: ["ffmpeg"],
        VCS: ["git"],
    }
    runtime_package_list = ["sdl2"]

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return ["pacman", "-Sy", "--needed", "--noconfirm", *packages]


# =============================================================================
# MACOS
# =============================================================================

class BrewInstaller(Installer):
    """Homebrew runs as the user; the compiler comes from the Xcode CLT."""

    name = "brew"
    group_packages = {
        TOOLCHAIN: ["cmake", "ninja"],
        GPU_SDK: [],
        CODEC: ["ffmpeg"],
        VCS: ["git"],
    }
    runtime_package_list = ["sdl2"]

    def probe(self, group: str) -> bool:
        if group == GPU_SDK:
            # Metal ships with the OS
            return True
        return super().probe(group)

    def gpu_sdk_root(self) -> Optional[str]:
        return None

    def gpu_backend(self) -> Optional[str]:
        return METAL

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return ["brew", "install", *packages]

    def manual_command(self, packages: Sequence[str]) -> str:
        return f"brew install {' '.join(packages)}"

    def elevate(self, argv: List[str], group: str, packages: Sequence[str]) -> List[str]:
        brew = self.which("brew")
        if not brew:
            raise ProvisioningError(
                group,
                f"Homebrew is required (https://brew.sh). Then run: {self.manual_command(packages)}",
            )
        if not self.find("clang"):
            raise ProvisioningError(
                group, "Xcode command line tools are missing. Run: xcode-select --install"
            )
        return [brew, *argv[1:]]


# =============================================================================
# WINDOWS
# =============================================================================

REQUIRED_DLLS = [
    "libwinpthread-1.dll",
    "libstdc++-6.dll",
    "libgcc_s_seh-1.dll",
    "SDL2.dll",
]


class MsysInstaller(Installer):
    """
    Private MSYS2 tree inside the workspace.

    A missing tree is fetched as the self-extracting base archive and
    unpacked into ``toolchain/``; packages then come from its pacman.
    Nothing here needs administrator rights.
    """

    name = "msys2"
    group_packages = {
        TOOLCHAIN: ["mingw-w64-x86_64-toolchain", "base-devel", "mingw-w64-x86_64-cmake", "ninja"],
        GPU_SDK: ["mingw-w64-x86_64-vulkan-devel", "mingw-w64-x86_64-shaderc"],
        CODEC: ["mingw-w64-x86_64-ffmpeg"],
        VCS: ["git"],
    }
    runtime_package_list = ["mingw-w64-x86_64-SDL2"]

    def __init__(
        self,
        workspace: Workspace,
        which: Which = shutil.which,
        privileged: Callable[[], bool] = is_privileged,
        downloader: Callable[..., Path] = download_file,
    ):
        super().__init__(workspace, which, privileged)
        self.downloader = downloader

    @property
    def root(self) -> Path:
        return self.workspace.toolchain_dir / "msys64"

    @property
    def mingw_dir(self) -> Path:
        return self.root / "mingw64"

    @property
    def mingw_bin(self) -> Path:
        return self.mingw_dir / "bin"

    @property
    def usr_bin(self) -> Path:
        return self.root / "usr" / "bin"

    @property
    def bash(self) -> Path:
        return self.usr_bin / "bash.exe"

    def search_path(self) -> Optional[str]:
        return os.pathsep.join([str(self.mingw_bin), str(self.usr_bin)])

    def probe(self, group: str) -> bool:
        if group == TOOLCHAIN:
            return all((self.mingw_bin / exe).is_file() for exe in ["gcc.exe", "g++.exe", "cmake.exe"])
        if group == CODEC:
            return (self.mingw_bin / "ffmpeg.exe").is_file()
        if group == VCS:
            return (self.usr_bin / "git.exe").is_file()
        return super().probe(group)

    def gpu_sdk_root(self) -> Optional[str]:
        header = self.mingw_dir / "include" / "vulkan" / "vulkan.h"
        if header.is_file() and (self.mingw_bin / "glslc.exe").is_file():
            return str(self.mingw_dir)
        return None

    def runtime_packages_satisfied(self) -> bool:
        return (self.mingw_bin / "SDL2.dll").is_file()

    def pacman_script(self, packages: Sequence[str]) -> str:
        return f"pacman -Sy --noconfirm && pacman -S --needed --noconfirm {' '.join(packages)}"

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return [str(self.bash), "--login", "-c", self.pacman_script(packages)]

    def manual_command(self, packages: Sequence[str]) -> str:
        return f'"{self.bash}" --login -c "{self.pacman_script(packages)}"'

    def elevate(self, argv: List[str], group: str, packages: Sequence[str]) -> List[str]:
        return argv

    def ensure_base(self, runner: CommandRunner) -> None:
        """Download and unpack the MSYS2 base tree if it isn't there yet."""
        if self.bash.is_file():
            return
        self.workspace.ensure()
        archive = self.workspace.downloads_dir / "msys2-base-x86_64-latest.sfx.exe"
        runner.emit("Downloading MSYS2 base archive")
        try:
            self.downloader(config.MSYS_INSTALLER_URL, archive, scratch_dir=self.workspace.downloads_dir)
        except DownloadError as e:
            raise ProvisioningError(TOOLCHAIN, str(e), command=config.MSYS_INSTALLER_URL) from e
        try:
            runner.run(archive, ["-y", f"-o{self.workspace.toolchain_dir}"], quiet=True, label="msys")
        except ProcessError as e:
            raise ProvisioningError(TOOLCHAIN, f"Extracting MSYS2 failed: {e}", command=str(archive)) from e
        if not self.bash.is_file():
            raise ProvisioningError(TOOLCHAIN, f"MSYS2 archive did not produce {self.bash}")

    def install(self, groups: Sequence[str], runner: CommandRunner) -> None:
        self.ensure_base(runner)
        packages = self.packages_for(groups)
        if not packages:
            return
        label = ",".join(groups)
        argv = self.install_argv(packages)
        env = dict(os.environ, MSYSTEM="MINGW64", CHERE_INVOKING="1")
        runner.emit(f"Installing {' '.join(packages)}")
        try:
            runner.run(argv[0], argv[1:], env=env, quiet=True, label=label)
        except ProcessError as e:
            raise ProvisioningError(label, str(e), command=self.manual_command(packages)) from e

    def build_context(self) -> ToolchainContext:
        cmake = self.mingw_bin / "cmake.exe"
        if not cmake.is_file():
            raise ProvisioningError(TOOLCHAIN, f"cmake not found at {cmake}")
        ninja = self.find("ninja.exe")
        return ToolchainContext.create(
            compiler=str(self.mingw_bin / "gcc.exe"),
            cxx_compiler=str(self.mingw_bin / "g++.exe"),
            archiver=str(self.mingw_bin / "ar.exe"),
            build_generator=str(cmake),
            make_program=ninja,
            codec_tool=self.find("ffmpeg.exe"),
            vcs_tool=self.find("git.exe"),
            gpu_sdk_root=self.gpu_sdk_root(),
            gpu_backend=self.gpu_backend(),
            bin_dirs=[str(self.mingw_bin), str(self.usr_bin)],
            extra_cmake_args=[f"-DSDL2_DIR={(self.mingw_dir / 'lib' / 'cmake' / 'SDL2').as_posix()}"],
        )

    def runtime_libraries(self, context: ToolchainContext) -> List[Path]:
        return [self.mingw_bin / dll for dll in REQUIRED_DLLS]


# =============================================================================
# FACTORY
# =============================================================================

LINUX_INSTALLERS = [
    ("apt-get", AptInstaller),
    ("dnf", DnfInstaller),
    ("pacman", PacmanInstaller),
]


def installer_for_host(
    workspace: Workspace,
    host: Optional[str] = None,
    which: Which = shutil.which,
) -> Installer:
    """
    Pick the installer for ``host``.

    Raises:
        ProvisioningError: Linux host without a supported package manager
    """
    host = host or host_platform()
    if host == WINDOWS:
        return MsysInstaller(workspace, which)
    if host == MACOS:
        return BrewInstaller(workspace, which)
    if host == LINUX:
        for tool, installer_cls in LINUX_INSTALLERS:
            if which(tool):
                logger.debug(f"Using {installer_cls.name} installer")
                return installer_cls(workspace, which)
        raise ProvisioningError(
            TOOLCHAIN,
            "No supported package manager found (apt-get, dnf, pacman). "
            "Install a C/C++ compiler, cmake, ninja, ffmpeg and git manually.",
        )
    raise ProvisioningError(TOOLCHAIN, f"Unsupported host platform: {host}")
