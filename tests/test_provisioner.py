"""
Dependency provisioning tests.

Provisioner runs against an in-memory installer; the concrete installers
get a fake ``which`` and a Mock runner so no package manager is touched.
"""

from pathlib import Path
from unittest.mock import Mock

import pytest

from easywhisper.errors import DownloadError, PrivilegeError, ProcessError, ProvisioningError
from easywhisper.events import Channel, StepState
from easywhisper.process_manager import CommandRunner
from easywhisper.system import LINUX, MACOS, WINDOWS
from easywhisper.toolchain import (
    CODEC,
    DEPENDENCY_GROUPS,
    GPU_SDK,
    TOOLCHAIN,
    VCS,
    AptInstaller,
    BrewInstaller,
    DnfInstaller,
    GroupState,
    Installer,
    MsysInstaller,
    PacmanInstaller,
    Provisioner,
    ToolchainContext,
    installer_for_host,
)
from easywhisper.toolchain.context import METAL, VULKAN
from easywhisper.toolchain.installers import RUNTIME
from easywhisper.toolchain.provisioner import BOOTSTRAP_MARKER


class MemoryInstaller(Installer):
    """Groups become present when installed unless listed as failing."""

    def __init__(self, workspace, present=(), failures=None, unfixable=()):
        super().__init__(workspace, which=lambda *a, **k: None, privileged=lambda: True)
        self.present = set(present)
        self.failures = failures or {}
        self.unfixable = set(unfixable)
        self.installs = []
        self.runtime_present = True
        self.runtime_installs = 0

    def probe(self, group):
        return group in self.present

    def install(self, groups, runner):
        self.installs.append(list(groups))
        for group in groups:
            if group in self.failures:
                raise self.failures[group]
        self.present.update(g for g in groups if g not in self.unfixable)

    def build_context(self):
        return ToolchainContext.create(
            compiler="cc", cxx_compiler="c++", archiver="ar", build_generator="cmake", base_env={}
        )

    def runtime_packages_satisfied(self):
        return self.runtime_present

    def install_runtime_packages(self, runner):
        self.runtime_installs += 1


def fake_which(available):
    def which(name, path=None):
        return available.get(name)
    return which


@pytest.fixture
def progress():
    return Channel("progress")


@pytest.fixture
def console():
    return Channel("console")


@pytest.fixture
def runner(console):
    return CommandRunner("compile", console)


def make_provisioner(installer, workspace, runner, progress):
    return Provisioner(installer, workspace, runner, progress)


def mark_bootstrapped(workspace):
    workspace.toolchain_dir.mkdir(parents=True, exist_ok=True)
    (workspace.toolchain_dir / BOOTSTRAP_MARKER).write_text("ok\n")


# =============================================================================
# PROVISIONER
# =============================================================================

def test_everything_present(workspace, runner, progress, recorder):
    events = recorder(progress)
    installer = MemoryInstaller(workspace, present=DEPENDENCY_GROUPS)
    provisioner = make_provisioner(installer, workspace, runner, progress)

    result = provisioner.ensure()

    assert result.success
    assert result.context is not None
    assert installer.installs == []
    assert [(e.step, e.state) for e in events.items] == [
        (f"deps-{g}", StepState.SUCCESS) for g in DEPENDENCY_GROUPS
    ]
    assert provisioner.bootstrapped


def test_first_run_installs_all_groups_together(workspace, runner, progress, recorder):
    events = recorder(progress)
    installer = MemoryInstaller(workspace, present=[TOOLCHAIN, VCS])
    provisioner = make_provisioner(installer, workspace, runner, progress)

    result = provisioner.ensure()

    assert result.success
    assert installer.installs == [DEPENDENCY_GROUPS]
    assert all(state == GroupState.SATISFIED for state in result.states.values())
    assert provisioner.bootstrapped
    gpu_steps = [e.state for e in events.items if e.step == f"deps-{GPU_SDK}"]
    assert gpu_steps == [StepState.RUNNING, StepState.SUCCESS]


def test_first_run_failure_fails_every_missing_group(workspace, runner, progress, recorder, console):
    lines = recorder(console)
    installer = MemoryInstaller(
        workspace, present=[TOOLCHAIN], failures={CODEC: ProvisioningError(CODEC, "apt failed")}
    )
    provisioner = make_provisioner(installer, workspace, runner, progress)

    result = provisioner.ensure()

    assert not result.success
    assert len(installer.installs) == 1
    assert result.states == {
        TOOLCHAIN: GroupState.SATISFIED,
        GPU_SDK: GroupState.FAILED,
        CODEC: GroupState.FAILED,
        VCS: GroupState.FAILED,
    }
    assert result.context is not None
    assert not provisioner.bootstrapped
    assert "[codec] apt failed" in result.error
    assert any("apt failed" in m for m in lines.messages())


def test_later_runs_install_per_group_and_continue(workspace, runner, progress):
    mark_bootstrapped(workspace)
    installer = MemoryInstaller(
        workspace, present=[TOOLCHAIN], failures={GPU_SDK: ProvisioningError(GPU_SDK, "no vulkan")}
    )
    provisioner = make_provisioner(installer, workspace, runner, progress)

    result = provisioner.ensure()

    assert installer.installs == [[GPU_SDK], [CODEC], [VCS]]
    assert result.states[GPU_SDK] == GroupState.FAILED
    assert result.states[CODEC] == GroupState.SATISFIED
    assert result.states[VCS] == GroupState.SATISFIED
    assert result.failed_groups == [GPU_SDK]
    assert not result.success
    assert result.context is not None


def test_privilege_error_stops_the_pass(workspace, runner, progress):
    mark_bootstrapped(workspace)
    denied = PrivilegeError(GPU_SDK, "Administrator privileges are required. Run manually: sudo ...")
    installer = MemoryInstaller(workspace, present=[TOOLCHAIN], failures={GPU_SDK: denied})
    provisioner = make_provisioner(installer, workspace, runner, progress)

    result = provisioner.ensure()

    assert installer.installs == [[GPU_SDK]]
    assert result.states[GPU_SDK] == GroupState.FAILED
    assert result.states[CODEC] == GroupState.UNCHECKED
    assert result.states[VCS] == GroupState.UNCHECKED
    assert "Run manually" in result.error
    assert not result.success


def test_group_still_missing_after_install(workspace, runner, progress):
    mark_bootstrapped(workspace)
    installer = MemoryInstaller(workspace, present=[TOOLCHAIN, GPU_SDK, VCS], unfixable=[CODEC])
    result = make_provisioner(installer, workspace, runner, progress).ensure()
    assert result.states[CODEC] == GroupState.FAILED
    assert "FFmpeg still missing after install" in result.error


def test_force_forgets_bootstrap(workspace, runner, progress):
    mark_bootstrapped(workspace)
    installer = MemoryInstaller(workspace, present=[TOOLCHAIN])
    provisioner = make_provisioner(installer, workspace, runner, progress)

    assert provisioner.ensure(force=True).success
    assert installer.installs == [DEPENDENCY_GROUPS]
    assert provisioner.bootstrapped


def test_missing_toolchain_means_no_context(workspace, runner, progress):
    mark_bootstrapped(workspace)
    installer = MemoryInstaller(
        workspace, present=[GPU_SDK, CODEC, VCS], failures={TOOLCHAIN: ProvisioningError(TOOLCHAIN, "no gcc")}
    )
    result = make_provisioner(installer, workspace, runner, progress).ensure()
    assert result.context is None
    assert result.failed_groups == [TOOLCHAIN]


def test_runtime_packages(workspace, runner, progress, console, recorder):
    lines = recorder(console)
    installer = MemoryInstaller(workspace)
    provisioner = make_provisioner(installer, workspace, runner, progress)

    provisioner.ensure_runtime_packages()
    assert installer.runtime_installs == 0
    assert "Runtime packages already present" in lines.messages()

    installer.runtime_present = False
    provisioner.ensure_runtime_packages()
    assert installer.runtime_installs == 1


# =============================================================================
# LINUX INSTALLERS
# =============================================================================

APT_ARGV = ["sh", "-c", "apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y ffmpeg"]


def test_elevate_when_privileged(workspace):
    installer = AptInstaller(workspace, which=fake_which({}), privileged=lambda: True)
    assert installer.elevate(list(APT_ARGV), CODEC, ["ffmpeg"]) == APT_ARGV


def test_elevate_with_passwordless_sudo(workspace, monkeypatch):
    installer = AptInstaller(
        workspace, which=fake_which({"sudo": "/usr/bin/sudo", "pkexec": "/usr/bin/pkexec"}),
        privileged=lambda: False,
    )
    monkeypatch.setattr(installer, "sudo_without_password", lambda sudo: True)
    assert installer.elevate(list(APT_ARGV), CODEC, ["ffmpeg"]) == ["/usr/bin/sudo", "-n", *APT_ARGV]


def test_elevate_falls_back_to_pkexec(workspace, monkeypatch):
    installer = AptInstaller(
        workspace, which=fake_which({"sudo": "/usr/bin/sudo", "pkexec": "/usr/bin/pkexec"}),
        privileged=lambda: False,
    )
    monkeypatch.setattr(installer, "sudo_without_password", lambda sudo: False)
    assert installer.elevate(list(APT_ARGV), CODEC, ["ffmpeg"]) == ["/usr/bin/pkexec", *APT_ARGV]


def test_elevate_without_any_mechanism(workspace):
    installer = AptInstaller(workspace, which=fake_which({}), privileged=lambda: False)
    with pytest.raises(PrivilegeError) as exc_info:
        installer.elevate(list(APT_ARGV), CODEC, ["ffmpeg"])
    manual = "sudo apt-get update && sudo apt-get install -y ffmpeg"
    assert exc_info.value.command == manual
    assert f"Run manually: {manual}" in str(exc_info.value)
    assert exc_info.value.group == CODEC


def test_apt_install_runs_one_quiet_transaction(workspace):
    installer = AptInstaller(workspace, which=fake_which({}), privileged=lambda: True)
    runner = Mock()

    installer.install([CODEC, VCS], runner)

    runner.run.assert_called_once_with(
        "sh", ["-c", "apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y ffmpeg git"],
        quiet=True, label="codec,vcs",
    )
    runner.emit.assert_called_once_with("Installing ffmpeg git")


def test_install_failure_becomes_provisioning_error(workspace):
    installer = DnfInstaller(workspace, which=fake_which({}), privileged=lambda: True)
    runner = Mock()
    runner.run.side_effect = ProcessError("dnf", exit_code=1)

    with pytest.raises(ProvisioningError) as exc_info:
        installer.install([CODEC], runner)
    assert exc_info.value.group == CODEC
    assert exc_info.value.command == "dnf install -y ffmpeg-free"
    assert not isinstance(exc_info.value, PrivilegeError)


def test_packages_for_dedupes_and_maps_runtime(workspace):
    installer = PacmanInstaller(workspace)
    assert installer.packages_for([TOOLCHAIN, TOOLCHAIN, RUNTIME]) == ["base-devel", "cmake", "ninja", "sdl2"]


def test_probes_use_which(workspace):
    tools = {"gcc": "/usr/bin/gcc", "g++": "/usr/bin/g++", "cmake": "/usr/bin/cmake", "git": "/usr/bin/git"}
    installer = AptInstaller(workspace, which=fake_which(tools))
    assert installer.probe(TOOLCHAIN)
    assert installer.probe(VCS)
    assert not installer.probe(CODEC)
    assert not installer.probe(GPU_SDK)
    with pytest.raises(ValueError):
        installer.probe("spreadsheet")

    del tools["cmake"]
    assert not installer.probe(TOOLCHAIN)


def test_gpu_sdk_from_environment(workspace, tmp_path, monkeypatch):
    sdk = tmp_path / "VulkanSDK"
    sdk.mkdir()
    monkeypatch.setenv("VULKAN_SDK", str(sdk))
    installer = AptInstaller(workspace, which=fake_which({}))
    assert installer.probe(GPU_SDK)
    assert installer.gpu_backend() == VULKAN


def test_build_context(workspace):
    tools = {name: f"/usr/bin/{name}" for name in ["cc", "c++", "ar", "cmake", "ninja", "git", "ffmpeg"]}
    context = AptInstaller(workspace, which=fake_which(tools)).build_context()

    assert context.compiler == "/usr/bin/cc"
    assert context.build_generator == "/usr/bin/cmake"
    assert context.vcs_tool == "/usr/bin/git"
    assert context.env["CC"] == "/usr/bin/cc"
    assert not context.gpu_enabled
    args = context.cmake_arguments()
    assert args[:3] == ["-G", "Ninja", "-DCMAKE_MAKE_PROGRAM=/usr/bin/ninja"]
    assert "-DBUILD_SHARED_LIBS=OFF" in args


def test_build_context_reports_missing_tools(workspace):
    tools = {name: f"/usr/bin/{name}" for name in ["cc", "c++", "cmake"]}
    with pytest.raises(ProvisioningError, match="archiver"):
        AptInstaller(workspace, which=fake_which(tools)).build_context()


def test_installer_for_host(workspace):
    assert isinstance(installer_for_host(workspace, LINUX, fake_which({"dnf": "/usr/bin/dnf"})), DnfInstaller)
    assert isinstance(installer_for_host(workspace, LINUX, fake_which({"apt-get": "/usr/bin/apt-get"})), AptInstaller)
    assert isinstance(installer_for_host(workspace, MACOS, fake_which({})), BrewInstaller)
    assert isinstance(installer_for_host(workspace, WINDOWS, fake_which({})), MsysInstaller)
    with pytest.raises(ProvisioningError, match="No supported package manager"):
        installer_for_host(workspace, LINUX, fake_which({}))


# =============================================================================
# MACOS / WINDOWS INSTALLERS
# =============================================================================

def test_brew_requires_homebrew_and_clang(workspace):
    with pytest.raises(ProvisioningError, match="brew.sh"):
        BrewInstaller(workspace, which=fake_which({})).elevate(["brew", "install", "ffmpeg"], CODEC, ["ffmpeg"])

    no_clang = BrewInstaller(workspace, which=fake_which({"brew": "/opt/homebrew/bin/brew"}))
    with pytest.raises(ProvisioningError, match="xcode-select --install"):
        no_clang.elevate(["brew", "install", "ffmpeg"], CODEC, ["ffmpeg"])

    ready = BrewInstaller(workspace, which=fake_which({"brew": "/opt/homebrew/bin/brew", "clang": "/usr/bin/clang"}))
    assert ready.elevate(["brew", "install", "ffmpeg"], CODEC, ["ffmpeg"]) == [
        "/opt/homebrew/bin/brew", "install", "ffmpeg",
    ]
    assert ready.probe(GPU_SDK)
    assert ready.gpu_backend() == METAL


def touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


def test_msys_probes_look_inside_the_private_tree(workspace):
    installer = MsysInstaller(workspace, which=fake_which({}))
    assert not installer.probe(TOOLCHAIN)
    for exe in ["gcc.exe", "g++.exe", "cmake.exe", "ffmpeg.exe"]:
        touch(installer.mingw_bin / exe)
    touch(installer.usr_bin / "git.exe")
    assert installer.probe(TOOLCHAIN)
    assert installer.probe(CODEC)
    assert installer.probe(VCS)
    assert not installer.probe(GPU_SDK)


def test_msys_install_uses_pacman_in_tree(workspace):
    installer = MsysInstaller(workspace, which=fake_which({}))
    touch(installer.bash)
    runner = Mock()

    installer.install([CODEC], runner)

    args, kwargs = runner.run.call_args
    assert args[0] == str(installer.bash)
    assert args[1] == ["--login", "-c",
                       "pacman -Sy --noconfirm && pacman -S --needed --noconfirm mingw-w64-x86_64-ffmpeg"]
    assert kwargs["env"]["MSYSTEM"] == "MINGW64"
    assert kwargs["quiet"] is True


def test_msys_base_download_failure(workspace):
    downloader = Mock(side_effect=DownloadError("https://example.com/msys.exe", "Download failed with status 503", 503))
    installer = MsysInstaller(workspace, which=fake_which({}), downloader=downloader)
    with pytest.raises(ProvisioningError) as exc_info:
        installer.install([TOOLCHAIN], Mock())
    assert exc_info.value.group == TOOLCHAIN
    assert "503" in str(exc_info.value)


def test_msys_runtime_libraries_and_context(workspace):
    installer = MsysInstaller(workspace, which=fake_which({}))
    touch(installer.mingw_bin / "cmake.exe")
    context = installer.build_context()
    assert context.compiler == str(installer.mingw_bin / "gcc.exe")
    assert str(installer.mingw_bin) in context.env["PATH"]
    assert any(a.startswith("-DSDL2_DIR=") for a in context.cmake_arguments())
    names = [p.name for p in installer.runtime_libraries(context)]
    assert names == ["libwinpthread-1.dll", "libstdc++-6.dll", "libgcc_s_seh-1.dll", "SDL2.dll"]
