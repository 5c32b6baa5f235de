"""
Dependency-group state machine.

Every group starts ``unchecked``. A passing probe moves it straight to
``satisfied``; otherwise it goes through ``installing`` and ends
``satisfied`` or ``failed``.

The first pass on a workspace (no bootstrap marker yet) installs the
packages of *all* groups in one package-manager transaction. Later passes
only touch groups that are still missing, one group per transaction, and
keep going after a failed group so that whatever did install stays
usable. A PrivilegeError stops the pass at once since every remaining
group would hit it too.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import PrivilegeError, ProvisioningError
from ..events import Channel, CompileProgressEvent, StepState
from ..process_manager import CommandRunner
from ..workspace import Workspace
from .context import ToolchainContext
from .installers import DEPENDENCY_GROUPS, GROUP_LABELS, TOOLCHAIN, Installer

logger = logging.getLogger(__name__)

BOOTSTRAP_MARKER = ".bootstrap-complete"


class GroupState(str, Enum):
    UNCHECKED = "unchecked"
    SATISFIED = "satisfied"
    INSTALLING = "installing"
    FAILED = "failed"


@dataclass
class ProvisionResult:
    """
    Outcome of one provisioning pass.

    ``context`` is set whenever the toolchain group is usable, even if
    another group failed; ``success`` is True only if every group is
    satisfied.
    """
    success: bool
    states: Dict[str, GroupState] = field(default_factory=dict)
    context: Optional[ToolchainContext] = None
    error: Optional[str] = None

    @property
    def failed_groups(self) -> List[str]:
        return [g for g, s in self.states.items() if s == GroupState.FAILED]


class Provisioner:
    """Brings the dependency groups to ``satisfied`` through an Installer."""

    def __init__(
        self,
        installer: Installer,
        workspace: Workspace,
        runner: CommandRunner,
        progress: Channel[CompileProgressEvent],
        groups: Sequence[str] = DEPENDENCY_GROUPS,
    ):
        self.installer = installer
        self.workspace = workspace
        self.runner = runner
        self.progress = progress
        self.groups = list(groups)
        self.states: Dict[str, GroupState] = {g: GroupState.UNCHECKED for g in self.groups}

    @property
    def bootstrap_marker(self) -> Path:
        return self.workspace.toolchain_dir / BOOTSTRAP_MARKER

    @property
    def bootstrapped(self) -> bool:
        return self.bootstrap_marker.is_file()

    def ensure(self, force: bool = False) -> ProvisionResult:
        """
        Probe every group and install what is missing.

        Args:
            force: Forget the bootstrap marker so all groups are installed
                together again

        Returns:
            ProvisionResult; errors are reported in it, never raised
        """
        self.states = {g: GroupState.UNCHECKED for g in self.groups}
        if force and self.bootstrap_marker.exists():
            self.bootstrap_marker.unlink()

        missing = []
        for group in self.groups:
            if self.installer.probe(group):
                self._transition(group, GroupState.SATISFIED, f"{GROUP_LABELS[group]} already present")
            else:
                missing.append(group)

        errors: List[str] = []
        if missing and not self.bootstrapped:
            errors = self._bootstrap(missing)
        elif missing:
            errors = self._install_each(missing)
        elif not self.bootstrapped:
            self._write_marker()

        return self._result(errors)

    def ensure_runtime_packages(self) -> None:
        """
        Install the libraries the binaries link against (SDL2).

        Raises:
            ProvisioningError: The install failed
        """
        if self.installer.runtime_packages_satisfied():
            self.runner.emit("Runtime packages already present")
            return
        self.installer.install_runtime_packages(self.runner)

    # ==================== Passes ====================

    def _bootstrap(self, missing: List[str]) -> List[str]:
        for group in missing:
            self._transition(group, GroupState.INSTALLING, f"Installing {GROUP_LABELS[group]}")
        self.runner.emit("First run: installing all dependency groups together")

        try:
            self.installer.install(self.groups, self.runner)
        except ProvisioningError as e:
            for group in missing:
                self._transition(group, GroupState.FAILED, f"{GROUP_LABELS[group]} failed", error=str(e))
            return [str(e)]

        self._write_marker()
        return self._reprobe(missing)

    def _install_each(self, missing: List[str]) -> List[str]:
        errors = []
        for group in missing:
            self._transition(group, GroupState.INSTALLING, f"Installing {GROUP_LABELS[group]}")
            try:
                self.installer.install([group], self.runner)
            except PrivilegeError as e:
                self._transition(group, GroupState.FAILED, f"{GROUP_LABELS[group]} failed", error=str(e))
                errors.append(str(e))
                return errors
            except ProvisioningError as e:
                self._transition(group, GroupState.FAILED, f"{GROUP_LABELS[group]} failed", error=str(e))
                errors.append(str(e))
                continue
            errors += self._reprobe([group])
        return errors

    def _reprobe(self, groups: List[str]) -> List[str]:
        errors = []
        for group in groups:
            if self.installer.probe(group):
                self._transition(group, GroupState.SATISFIED, f"{GROUP_LABELS[group]} installed")
            else:
                message = f"{GROUP_LABELS[group]} still missing after install"
                self._transition(group, GroupState.FAILED, message, error=message)
                errors.append(message)
        return errors

    def _result(self, errors: List[str]) -> ProvisionResult:
        context = None
        if self.states.get(TOOLCHAIN, GroupState.SATISFIED) == GroupState.SATISFIED:
            try:
                context = self.installer.build_context()
            except ProvisioningError as e:
                errors.append(str(e))

        success = not errors and all(s == GroupState.SATISFIED for s in self.states.values())
        error = "; ".join(errors) if errors else None
        if error:
            logger.warning(f"Provisioning incomplete: {error}")
        return ProvisionResult(success, dict(self.states), context, error)

    # ==================== Helpers ====================

    def _write_marker(self) -> None:
        self.bootstrap_marker.parent.mkdir(parents=True, exist_ok=True)
        self.bootstrap_marker.write_text("ok\n", encoding="utf-8")

    def _transition(self, group: str, state: GroupState, message: str, error: Optional[str] = None) -> None:
        self.states[group] = state
        step_state = {
            GroupState.UNCHECKED: StepState.PENDING,
            GroupState.INSTALLING: StepState.RUNNING,
            GroupState.SATISFIED: StepState.SUCCESS,
            GroupState.FAILED: StepState.ERROR,
        }[state]
        progress = 0 if step_state == StepState.RUNNING else 100
        self.progress.publish(CompileProgressEvent(
            step=f"deps-{group}",
            message=message,
            progress=progress,
            state=step_state,
            error=error,
        ))
        if error:
            self.runner.emit(f"[deps-{group}] {error}")
