"""
Resolved toolchain for one build/provisioning run.
"""

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

VULKAN = "vulkan"
METAL = "metal"


@dataclass(frozen=True)
class ToolchainContext:
    """
    Paths of the tools a build needs plus the environment to run them in.

    Created once per run by ``Installer.build_context()`` and never
    persisted. ``env`` is read-only: PATH is prefixed with the toolchain's
    bin directories and CC/CXX/AR (and VULKAN_SDK when known) are set.
    """
    compiler: str
    cxx_compiler: str
    archiver: str
    build_generator: str
    make_program: Optional[str] = None
    codec_tool: Optional[str] = None
    vcs_tool: Optional[str] = None
    gpu_sdk_root: Optional[str] = None
    gpu_backend: Optional[str] = None
    bin_dirs: Tuple[str, ...] = ()
    extra_cmake_args: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def create(
        cls,
        *,
        compiler: str,
        cxx_compiler: str,
        archiver: str,
        build_generator: str,
        make_program: Optional[str] = None,
        codec_tool: Optional[str] = None,
        vcs_tool: Optional[str] = None,
        gpu_sdk_root: Optional[str] = None,
        gpu_backend: Optional[str] = None,
        bin_dirs: Sequence[str] = (),
        extra_cmake_args: Sequence[str] = (),
        base_env: Optional[Mapping[str, str]] = None,
    ) -> "ToolchainContext":
        env = dict(os.environ if base_env is None else base_env)
        if bin_dirs:
            env["PATH"] = os.pathsep.join([*bin_dirs, env.get("PATH", "")])
        env["CC"] = compiler
        env["CXX"] = cxx_compiler
        env["AR"] = archiver
        if gpu_sdk_root and gpu_backend == VULKAN:
            env["VULKAN_SDK"] = gpu_sdk_root

        return cls(
            compiler=compiler,
            cxx_compiler=cxx_compiler,
            archiver=archiver,
            build_generator=build_generator,
            make_program=make_program,
            codec_tool=codec_tool,
            vcs_tool=vcs_tool,
            gpu_sdk_root=gpu_sdk_root,
            gpu_backend=gpu_backend,
            bin_dirs=tuple(bin_dirs),
            extra_cmake_args=tuple(extra_cmake_args),
            env=MappingProxyType(env),
        )

    @property
    def gpu_enabled(self) -> bool:
        return self.gpu_backend is not None

    def cmake_arguments(self) -> List[str]:
        """Compiler and generator definitions for the configure step."""
        args = []
        if self.make_program:
            args += ["-G", "Ninja", f"-DCMAKE_MAKE_PROGRAM={self.make_program}"]
        args += [
            f"-DCMAKE_C_COMPILER={self.compiler}",
            f"-DCMAKE_CXX_COMPILER={self.cxx_compiler}",
            f"-DCMAKE_AR={self.archiver}",
        ]
        if self.gpu_backend == VULKAN:
            args.append("-DGGML_VULKAN=1")
        elif self.gpu_backend == METAL:
            args.append("-DGGML_METAL=ON")
        args += list(self.extra_cmake_args)
        return args
