"""Compiler and linker configuration for extensions linking libtorch."""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import setuptools

from . import env
from .cuda import CudaArch, host_arches, nvcc_arch_flags
from .errors import GpuUnavailable
from .library import Library
from .probe import probe_libtorch, probe_python

__all__ = [
    "CXX_STANDARD_FLAG",
    "BuildConfig",
    "cxx11_abi_flag",
    "configure_cpp",
    "configure_cuda",
    "cpp_extension",
    "cuda_extension",
    "link_directives",
]

CXX_STANDARD_FLAG = "-std=c++14"

PathLike = Union[str, Path]


@dataclass
class BuildConfig:
    """Everything a compiler driver needs to build against libtorch."""

    include_dirs: List[str] = field(default_factory=list)
    library_dirs: List[str] = field(default_factory=list)
    runtime_library_dirs: List[str] = field(default_factory=list)
    libraries: List[str] = field(default_factory=list)
    cxx_flags: List[str] = field(default_factory=list)
    nvcc_flags: List[str] = field(default_factory=list)

    def add_include_dir(self, path: PathLike) -> None:
        self.include_dirs.append(str(path))

    def add_link_path(self, path: PathLike) -> None:
        """Search path for the linker, also embedded as rpath."""
        self.library_dirs.append(str(path))
        # MSVC has no rpath
        if sys.platform != "win32":
            self.runtime_library_dirs.append(str(path))

    def add_library(self, name: str) -> None:
        self.libraries.append(name)

    def extension_kwargs(self) -> dict:
        kwargs = dict(
            include_dirs=list(self.include_dirs),
            library_dirs=list(self.library_dirs),
            runtime_library_dirs=list(self.runtime_library_dirs),
            libraries=list(self.libraries),
        )
        if self.nvcc_flags:
            kwargs["extra_compile_args"] = {
                "cxx": list(self.cxx_flags),
                "nvcc": list(self.nvcc_flags),
            }
        else:
            kwargs["extra_compile_args"] = list(self.cxx_flags)
        return kwargs


def cxx11_abi_flag(library: Library) -> str:
    return f"-D_GLIBCXX_USE_CXX11_ABI={int(library.use_cxx11_abi)}"


def _compile_flags(library: Library) -> List[str]:
    # TODO: pass /std:c++14 to MSVC once Windows builds are configured
    if sys.platform == "win32":
        return []
    return [CXX_STANDARD_FLAG, cxx11_abi_flag(library)]


def _add_python(config: BuildConfig) -> None:
    python_config = probe_python()
    for path in python_config.includes:
        config.add_include_dir(path)
    for path in python_config.link_searches:
        config.add_link_path(path)
    for name in python_config.libraries:
        config.add_library(name)


def _configure(
    library: Library,
    use_gpu: Optional[bool],
    link_python: bool,
    include_dirs: Iterable[PathLike],
    library_dirs: Iterable[PathLike],
    libraries: Iterable[str],
) -> BuildConfig:
    config = BuildConfig()

    for path in library.include_paths(use_gpu):
        config.add_include_dir(path)
    for path in include_dirs:
        config.add_include_dir(path)
    config.cxx_flags.extend(_compile_flags(library))

    # link libtorch
    for path in library.link_paths(use_gpu):
        config.add_link_path(path)
    for name in library.libraries(use_gpu, link_python):
        config.add_library(name)

    # link user-specified libraries
    for path in library_dirs:
        config.add_link_path(path)
    for name in libraries:
        config.add_library(name)

    if link_python:
        _add_python(config)

    return config


def configure_cpp(
    use_gpu: Optional[bool] = None,
    link_python: bool = False,
    include_dirs: Iterable[PathLike] = (),
    library_dirs: Iterable[PathLike] = (),
    libraries: Iterable[str] = (),
) -> BuildConfig:
    """
    Configuration to compile C++ sources against libtorch.

    Args:
        use_gpu: True makes the GPU runtime mandatory, False disables it,
            None enables it when it was detected.
        link_python: Link the torch Python bindings and the Python runtime
        include_dirs: Additional include directories
        library_dirs: Additional library search paths
        libraries: Additional libraries to link
    """
    return _configure(probe_libtorch(), use_gpu, link_python,
                      include_dirs, library_dirs, libraries)


def configure_cuda(
    link_python: bool = False,
    include_dirs: Iterable[PathLike] = (),
    library_dirs: Iterable[PathLike] = (),
    libraries: Iterable[str] = (),
    arches: Optional[Sequence[CudaArch]] = None,
) -> BuildConfig:
    """
    Configuration to compile CUDA sources against libtorch.

    Architectures default to those of the GPUs on this host.

    Raises:
        GpuUnavailable: If libtorch has no GPU runtime
    """
    library = probe_libtorch()
    if not library.is_gpu_available():
        raise GpuUnavailable("CUDA runtime is not supported by libtorch")

    config = _configure(library, True, link_python,
                        include_dirs, library_dirs, libraries)
    if arches is None:
        arches = host_arches()
    config.nvcc_flags.extend(_compile_flags(library))
    config.nvcc_flags.extend(nvcc_arch_flags(arches))
    return config


def cpp_extension(name: str, sources: Sequence[PathLike], **kwargs) -> setuptools.Extension:
    """Setup C++ extension linking libtorch"""
    config = configure_cpp(**kwargs)
    return setuptools.Extension(
        name=name,
        sources=[str(src) for src in sources],
        language="c++",
        **config.extension_kwargs(),
    )


def cuda_extension(name: str, sources: Sequence[PathLike], **kwargs) -> setuptools.Extension:
    """
    Setup CUDA extension linking libtorch.

    The extension carries separate "cxx" and "nvcc" flags and is meant to be
    built by torch_build.build_ext.LibtorchBuildExtension.
    """
    config = configure_cuda(**kwargs)
    return setuptools.Extension(
        name=name,
        sources=[str(src) for src in sources],
        language="c++",
        **config.extension_kwargs(),
    )


def link_directives(
    use_gpu: Optional[bool] = None,
    link_python: bool = False,
    library_dirs: Iterable[PathLike] = (),
    libraries: Iterable[str] = (),
) -> List[str]:
    """
    Linker directives for build systems driven by line-oriented output.

    Each search path yields a `link-search` and an rpath `link-arg` line,
    each library a `link-lib` line, and each environment variable read
    while resolving a `rerun-if-env-changed` line.
    """
    library = probe_libtorch()
    directives = []

    def add_link_path(path: PathLike) -> None:
        directives.append(f"link-search=native={path}")
        directives.append(f"link-arg=-Wl,-rpath,{path}")

    def add_library(name: str) -> None:
        directives.append(f"link-lib={name}")

    for path in library.link_paths(use_gpu):
        add_link_path(path)
    for name in library.libraries(use_gpu, link_python):
        add_library(name)
    for path in library_dirs:
        add_link_path(path)
    for name in libraries:
        add_library(name)

    if link_python:
        python_config = probe_python()
        for path in python_config.link_searches:
            add_link_path(path)
        for name in python_config.libraries:
            add_library(name)

    directives.extend(f"rerun-if-env-changed={name}"
                      for name in env.tracked_env_vars())
    return directives
