"""
Binary resolver tests: search order, staging into bin/, PATH fallback.
"""

import os

import pytest

from easywhisper.errors import ResolutionError
from easywhisper.resolver import BinaryResolver
from easywhisper.system import LINUX, MACOS, WINDOWS

from conftest import write_executable


def test_candidate_order_linux(resolver, workspace, tmp_path):
    paths = [str(p) for p in resolver.candidates("whisper-cli")]
    assert paths == [
        str(workspace.bin_dir / "whisper-cli"),
        str(tmp_path / "resources" / "whisper-cli"),
        str(tmp_path / "app" / "whisper-cli"),
        str(tmp_path / "app" / "buildResources" / "whisper-cli"),
    ]


def test_candidate_order_macos_includes_bundle_dirs(workspace, tmp_path):
    resolver = BinaryResolver(workspace, [tmp_path / "res"], tmp_path / "app", host=MACOS)
    paths = [str(p) for p in resolver.candidates("whisper-stream")]
    assert paths == [
        str(workspace.bin_dir / "whisper-stream"),
        str(tmp_path / "res" / "whisper-stream"),
        str(tmp_path / "res" / "mac-bin" / "whisper-stream"),
        str(tmp_path / "app" / "whisper-stream"),
        str(tmp_path / "app" / "buildResources" / "whisper-stream"),
        str(tmp_path / "app" / "buildResources" / "mac-bin" / "whisper-stream"),
    ]


def test_windows_names_and_duplicates_removed(workspace, tmp_path):
    app = tmp_path / "app"
    resolver = BinaryResolver(workspace, [app], app, host=WINDOWS)
    paths = resolver.candidates("ffmpeg")
    assert all(p.name == "ffmpeg.exe" for p in paths)
    assert len(paths) == len({os.path.normpath(str(p)) for p in paths})
    assert len(paths) == 3


def test_workspace_hit_returned_without_staging(resolver, workspace, no_system_tools):
    target = write_executable(workspace.bin_dir / "whisper-cli", "print('cli')\n")
    result = resolver.resolve("whisper-cli")
    assert result.found
    assert result.command == str(target)
    assert not result.staged


def test_lower_priority_hit_is_staged_then_reused(resolver, workspace, tmp_path, no_system_tools):
    bundled = write_executable(tmp_path / "app" / "buildResources" / "whisper-cli", "print('bundled')\n")

    first = resolver.resolve("whisper-cli", allow_system_fallback=False)
    canonical = workspace.bin_dir / "whisper-cli"
    assert first.found and first.staged
    assert first.command == str(canonical)
    assert canonical.read_bytes() == bundled.read_bytes()
    assert os.access(canonical, os.X_OK)

    second = resolver.resolve("whisper-cli", allow_system_fallback=False)
    assert second.command == str(canonical)
    assert not second.staged


def test_directory_at_candidate_path_is_skipped(resolver, workspace, tmp_path, no_system_tools):
    (workspace.bin_dir / "whisper-cli").mkdir(parents=True)
    write_executable(tmp_path / "resources" / "whisper-cli", "print('res')\n")
    result = resolver.resolve("whisper-cli", allow_system_fallback=False)
    # bin/whisper-cli is a directory, so staging onto it fails and the
    # bundled path is used directly
    assert result.found
    assert result.command == str(tmp_path / "resources" / "whisper-cli")


def test_not_found_reports_every_searched_path(resolver, no_system_tools):
    result = resolver.resolve("whisper-stream", allow_system_fallback=False)
    assert not result.found
    assert result.command == ""
    assert result.searched == [str(p) for p in resolver.candidates("whisper-stream")]


def test_fallback_failure_is_recorded(resolver, no_system_tools):
    result = resolver.resolve("ffmpeg")
    assert not result.found
    assert result.searched[-1] == "ffmpeg (PATH)"


def test_system_fallback_uses_probe(resolver, tmp_path, monkeypatch):
    good = write_executable(tmp_path / "path" / "ffmpeg", "import sys\nsys.exit(0)\n")
    monkeypatch.setattr("easywhisper.resolver.shutil.which", lambda name, *a, **k: str(good))
    result = resolver.resolve("ffmpeg")
    assert result.found
    assert result.command == str(good)
    assert result.searched[-1] == str(good)


def test_system_fallback_rejects_failing_probe(resolver, tmp_path, monkeypatch):
    bad = write_executable(tmp_path / "path" / "ffmpeg", "import sys\nsys.exit(1)\n")
    monkeypatch.setattr("easywhisper.resolver.shutil.which", lambda name, *a, **k: str(bad))
    assert not resolver.resolve("ffmpeg").found


def test_fallback_disabled_ignores_path(resolver, tmp_path, monkeypatch):
    good = write_executable(tmp_path / "path" / "whisper-cli", "pass\n")
    monkeypatch.setattr("easywhisper.resolver.shutil.which", lambda name, *a, **k: str(good))
    assert not resolver.resolve("whisper-cli", allow_system_fallback=False).found


def test_require_raises_with_trail_and_hint(resolver, workspace, no_system_tools):
    with pytest.raises(ResolutionError) as exc_info:
        resolver.require("ffmpeg", hint="Install dependencies.")
    message = str(exc_info.value)
    assert message.startswith("ffmpeg executable not found. Checked paths: ")
    assert str(workspace.bin_dir / "ffmpeg") in message
    assert message.endswith("Install dependencies.")
    assert exc_info.value.tool == "ffmpeg"


def test_host_defaults_to_linux_layout(workspace, tmp_path):
    resolver = BinaryResolver(workspace, [], tmp_path / "app", host=LINUX)
    assert resolver.candidates("x")[0] == workspace.bin_dir / "x"
