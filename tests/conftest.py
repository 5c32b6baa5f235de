"""
Shared fixtures.

Fake binaries are small Python scripts made executable with a shebang
pointing at the running interpreter.
"""

import stat
import sys
import textwrap
import threading
from pathlib import Path
from typing import Callable, List

import pytest

from easywhisper.events import Channel
from easywhisper.resolver import BinaryResolver
from easywhisper.system import LINUX
from easywhisper.workspace import Workspace

if sys.platform == "win32":
    collect_ignore_glob = ["test_*.py"]


def _shebang() -> str:
    if len(sys.executable) < 120 and " " not in sys.executable:
        return f"#!{sys.executable}"
    return "#!/usr/bin/env python3"


def write_executable(path: Path, body: str) -> Path:
    """Write a Python script at ``path`` and mark it executable."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_shebang() + "\n" + textwrap.dedent(body).lstrip(), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class Recorder:
    """Channel subscriber that keeps every payload and can wait for one."""

    def __init__(self):
        self.items: List = []
        self._cond = threading.Condition()

    def __call__(self, payload):
        with self._cond:
            self.items.append(payload)
            self._cond.notify_all()

    def wait_for(self, predicate: Callable, timeout: float = 10.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: any(predicate(i) for i in self.items), timeout)

    def messages(self) -> List[str]:
        return [getattr(i, "message", i) for i in self.items]


@pytest.fixture
def workspace(tmp_path) -> Workspace:
    ws = Workspace(tmp_path / "workspace")
    yield ws
    ws.close_run_logger()


@pytest.fixture
def resolver(workspace, tmp_path) -> BinaryResolver:
    return BinaryResolver(
        workspace,
        resource_dirs=[tmp_path / "resources"],
        app_dir=tmp_path / "app",
        host=LINUX,
    )


@pytest.fixture
def recorder() -> Callable[[Channel], Recorder]:
    def attach(channel: Channel) -> Recorder:
        rec = Recorder()
        channel.subscribe(rec)
        return rec
    return attach


@pytest.fixture
def no_system_tools(monkeypatch):
    """Hide every executable on PATH from the resolver's fallback."""
    monkeypatch.setattr("easywhisper.resolver.shutil.which", lambda *a, **k: None)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path_factory):
    monkeypatch.setenv("HOME", str(tmp_path_factory.mktemp("home")))
    monkeypatch.delenv("VULKAN_SDK", raising=False)
