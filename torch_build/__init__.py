"""
torch_build: locate libtorch at build time and link extensions against it.

Typical use from a setup.py:

    from torch_build import cpp_extension

    ext_modules = [cpp_extension("my_ext", ["src/my_ext.cpp"])]
"""

from . import cuda, download, env, errors, extension, library, probe
from .cuda import CudaArch, host_arches, parse_arch_list
from .errors import (
    DeviceQueryError,
    DownloadError,
    GpuUnavailable,
    InvalidArchSpec,
    LibtorchNotFound,
    NoDeviceFound,
    ProbeScriptError,
    TorchBuildError,
    UnsafeArchiveError,
    UnsupportedPlatform,
    VersionMismatch,
)
from .extension import (
    BuildConfig,
    configure_cpp,
    configure_cuda,
    cpp_extension,
    cuda_extension,
    link_directives,
)
from .library import Api, ApiKind, CudaApi, CudaSplitApi, HipApi, Library, NoApi
from .probe import check_version, probe_api, probe_cxx11_abi, probe_libtorch

__version__ = env.get_version()


def clear_caches() -> None:
    """Forget every memoized probe, e.g. after changing the environment."""
    env.clear_caches()
    cuda.clear_caches()
    probe.clear_caches()


__all__ = [
    # Resolution
    "probe_libtorch",
    "probe_api",
    "probe_cxx11_abi",
    "check_version",
    "clear_caches",

    # Capabilities
    "Library",
    "Api",
    "ApiKind",
    "NoApi",
    "HipApi",
    "CudaApi",
    "CudaSplitApi",

    # Architectures
    "CudaArch",
    "parse_arch_list",
    "host_arches",

    # Build configuration
    "BuildConfig",
    "configure_cpp",
    "configure_cuda",
    "cpp_extension",
    "cuda_extension",
    "link_directives",

    # Errors
    "TorchBuildError",
    "LibtorchNotFound",
    "ProbeScriptError",
    "GpuUnavailable",
    "InvalidArchSpec",
    "NoDeviceFound",
    "DeviceQueryError",
    "VersionMismatch",
    "UnsupportedPlatform",
    "DownloadError",
    "UnsafeArchiveError",
]
