"""
Error taxonomy for the orchestration core.

Every failure that reaches a caller is one of these. Messages carry the
context needed to act on them without reading the source: the command that
ran, its exit code, the paths that were searched, the tool involved.
"""

from typing import List, Optional, Sequence


class EasyWhisperError(Exception):
    """Base class for expected, user facing errors."""


class ProcessError(EasyWhisperError):
    """A subprocess exited nonzero or could not be spawned."""

    def __init__(
        self,
        command: str,
        exit_code: Optional[int] = None,
        spawn_error: Optional[BaseException] = None,
        output: Optional[List[str]] = None,
        cancelled: bool = False,
    ):
        self.command = command
        self.exit_code = exit_code
        self.spawn_error = spawn_error
        self.output = list(output or [])
        self.cancelled = cancelled
        if cancelled:
            message = f"{command} not started: cancelled"
        elif spawn_error is not None:
            message = f"Failed to start {command}: {spawn_error}"
        else:
            message = f"{command} exited with code {exit_code}"
        super().__init__(message)


class ResolutionError(EasyWhisperError):
    """A required binary was not found anywhere in the search order."""

    def __init__(self, tool: str, searched: Sequence[str], hint: str = ""):
        self.tool = tool
        self.searched = list(searched)
        trail = ", ".join(self.searched) if self.searched else "<none>"
        message = f"{tool} executable not found. Checked paths: {trail}."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


class ProvisioningError(EasyWhisperError):
    """Installing a dependency group failed."""

    def __init__(self, group: str, message: str, command: Optional[str] = None):
        self.group = group
        self.command = command
        detail = f"[{group}] {message}"
        if command:
            detail = f"{detail} (command: {command})"
        super().__init__(detail)


class PrivilegeError(ProvisioningError):
    """No way to obtain the privileges a package manager needs."""


class ValidationError(EasyWhisperError):
    """Caller supplied input that cannot be used."""


class ConflictError(EasyWhisperError):
    """An exclusive operation was requested while one is already active."""


class DownloadError(EasyWhisperError):
    """A download failed before the destination was written."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(f"{message} ({url})")
