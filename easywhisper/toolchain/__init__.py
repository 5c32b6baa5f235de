"""
Toolchain provisioning.

- context.py      ToolchainContext (resolved tools + environment)
- installers.py   Per-platform installers and the dependency groups
- provisioner.py  Group state machine driving an installer
"""

from .context import ToolchainContext
from .installers import (
    CODEC,
    DEPENDENCY_GROUPS,
    GPU_SDK,
    TOOLCHAIN,
    VCS,
    AptInstaller,
    BrewInstaller,
    DnfInstaller,
    Installer,
    MsysInstaller,
    PacmanInstaller,
    installer_for_host,
)
from .provisioner import GroupState, ProvisionResult, Provisioner

__all__ = [
    'ToolchainContext',
    'Installer',
    'AptInstaller',
    'DnfInstaller',
    'PacmanInstaller',
    'BrewInstaller',
    'MsysInstaller',
    'installer_for_host',
    'DEPENDENCY_GROUPS',
    'TOOLCHAIN',
    'GPU_SDK',
    'CODEC',
    'VCS',
    'GroupState',
    'ProvisionResult',
    'Provisioner',
]
