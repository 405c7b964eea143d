"""
Libtorch installation and its capabilities.

The GPU runtime found next to libtorch is one of four variants:

- :class:`NoApi`: CPU only
- :class:`HipApi`: ROCm/HIP
- :class:`CudaApi`: CUDA, with GPU kernels in one `torch_cuda` library
- :class:`CudaSplitApi`: CUDA, with GPU kernels split across
  `torch_cuda_cu` and `torch_cuda_cpp`
"""

import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import GpuUnavailable, LibtorchNotFound, UnsupportedPlatform


class ApiKind(Enum):
    """Enumeration of GPU runtime variants."""
    NONE = "none"
    HIP = "hip"
    CUDA = "cuda"
    CUDA_SPLIT = "cuda_split"


@dataclass(frozen=True)
class NoApi:
    kind = ApiKind.NONE


@dataclass(frozen=True)
class HipApi:
    rocm_home: Path
    miopen_home: Path
    kind = ApiKind.HIP


@dataclass(frozen=True)
class CudaApi:
    cuda_home: Path
    cudnn_home: Optional[Path] = None
    kind = ApiKind.CUDA


@dataclass(frozen=True)
class CudaSplitApi:
    cuda_home: Path
    cudnn_home: Optional[Path] = None
    kind = ApiKind.CUDA_SPLIT


Api = Union[NoApi, HipApi, CudaApi, CudaSplitApi]

BASE_LIBRARIES = ("c10", "torch_cpu", "torch")
PYTHON_LIBRARY = "torch_python"
BASE_CUDA_LIBRARIES = ("cudart", "c10_cuda")
# amdhip64 requires ROCm >= 3.5, older releases ship hip_hcc instead
HIP_LIBRARIES = ("amdhip64", "c10_hip", "torch_hip")


def is_gpu_available(api: Api) -> bool:
    return not isinstance(api, NoApi)


def is_hip(api: Api) -> bool:
    return isinstance(api, HipApi)


def cuda_home_dir(api: Api) -> Optional[Path]:
    if isinstance(api, (CudaApi, CudaSplitApi)):
        return api.cuda_home
    return None


def cudnn_home_dir(api: Api) -> Optional[Path]:
    if isinstance(api, (CudaApi, CudaSplitApi)):
        return api.cudnn_home
    return None


def cuda_include_dir(api: Api) -> Optional[Path]:
    home = cuda_home_dir(api)
    return home / "include" if home is not None else None


def cuda_library_dir(api: Api) -> Optional[Path]:
    home = cuda_home_dir(api)
    return home / "lib64" if home is not None else None


def _find_lib_dir(home: Path) -> Path:
    """Pick `lib64` when it exists, otherwise `lib`."""
    for name in ("lib64", "lib"):
        candidate = home / name
        if candidate.exists():
            return candidate
    raise LibtorchNotFound(
        f'neither "lib64" nor "lib" exists under "{home}"')


def gpu_include_dirs(api: Api) -> List[Path]:
    if isinstance(api, HipApi):
        return [api.rocm_home / "include", api.miopen_home / "include"]
    if isinstance(api, (CudaApi, CudaSplitApi)):
        dirs = [api.cuda_home / "include"]
        if api.cudnn_home is not None:
            dirs.append(api.cudnn_home / "include")
        return dirs
    raise GpuUnavailable("CUDA runtime is not available for libtorch")


def gpu_link_dirs(api: Api) -> List[Path]:
    if isinstance(api, HipApi):
        return [api.rocm_home / "lib"]
    if isinstance(api, (CudaApi, CudaSplitApi)):
        if sys.platform == "win32":
            return [api.cuda_home / "lib" / "x64"]
        if not (sys.platform.startswith("linux") or sys.platform == "darwin"):
            raise UnsupportedPlatform(f"unsupported OS: {sys.platform}")
        dirs = [_find_lib_dir(api.cuda_home)]
        if api.cudnn_home is not None:
            dirs.append(_find_lib_dir(api.cudnn_home))
        return dirs
    raise GpuUnavailable("CUDA runtime is not available for libtorch")


def gpu_libraries(api: Api) -> List[str]:
    if isinstance(api, HipApi):
        return list(HIP_LIBRARIES)
    if isinstance(api, CudaApi):
        return [*BASE_CUDA_LIBRARIES, "torch_cuda"]
    if isinstance(api, CudaSplitApi):
        return [*BASE_CUDA_LIBRARIES, "torch_cuda_cu", "torch_cuda_cpp"]
    raise GpuUnavailable("CUDA runtime is not available for libtorch")


def needs_openmp_library() -> bool:
    """gomp must be linked explicitly except with MSVC and Apple toolchains"""
    return sys.platform not in ("win32", "darwin")


@dataclass(frozen=True)
class Library:
    """The information of a libtorch installation and its capabilities."""

    include_dirs: Tuple[Path, ...]
    lib_dir: Path
    api: Api
    use_cxx11_abi: bool

    def is_gpu_available(self) -> bool:
        return is_gpu_available(self.api)

    def _resolve_use_gpu(self, use_gpu: Optional[bool]) -> bool:
        return self.is_gpu_available() if use_gpu is None else use_gpu

    def include_paths(self, use_gpu: Optional[bool] = None) -> List[Path]:
        """
        Include paths passed to the C++ compiler.

        Args:
            use_gpu: True makes the GPU runtime mandatory, False disables it,
                None enables it when it was detected.

        Raises:
            GpuUnavailable: If use_gpu is True but no GPU runtime was detected
        """
        paths = list(self.include_dirs)
        if self._resolve_use_gpu(use_gpu):
            paths.extend(gpu_include_dirs(self.api))
        if sys.platform.startswith("linux"):
            paths = [path for path in paths if path != Path("/usr/include")]
        return paths

    def link_paths(self, use_gpu: Optional[bool] = None) -> List[Path]:
        """Library search paths passed to the linker. See include_paths()."""
        paths = [self.lib_dir]
        if self._resolve_use_gpu(use_gpu):
            paths.extend(gpu_link_dirs(self.api))
        return paths

    def libraries(self, use_gpu: Optional[bool] = None,
                  use_python: bool = False) -> List[str]:
        """
        Names of the libraries to link, in link order.

        Args:
            use_gpu: See include_paths()
            use_python: Also link the torch Python bindings
        """
        names = list(BASE_LIBRARIES)
        if use_python:
            names.append(PYTHON_LIBRARY)
        if self._resolve_use_gpu(use_gpu):
            names.extend(gpu_libraries(self.api))
        if needs_openmp_library():
            names.append("gomp")
        return names
