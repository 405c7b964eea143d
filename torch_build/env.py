"""
Build configuration read from the environment and from bundled data files.

Every environment variable consulted while resolving libtorch is recorded, so
that the surrounding build can rerun the resolution when one of them changes
(see :func:`tracked_env_vars`).
"""

import functools
import os
import platform
import shutil
import sys
import warnings
from pathlib import Path
from typing import List, Optional

PACKAGE_DIR = Path(__file__).resolve().parent
DATA_DIR = PACKAGE_DIR / "data"

DEFAULT_ROCM_HOME = Path("/opt/rocm")
DEFAULT_CUDA_HOME = Path("/usr/local/cuda")

_TRACKED_ENV_VARS: List[str] = []


def rerun_env(name: str) -> Optional[str]:
    """Read an environment variable and remember that the build depends on it."""
    if name not in _TRACKED_ENV_VARS:
        _TRACKED_ENV_VARS.append(name)
    return os.environ.get(name)


def rerun_env_path(name: str) -> Optional[Path]:
    value = rerun_env(name)
    return Path(value) if value else None


def rerun_env_flag(name: str) -> bool:
    value = rerun_env(name)
    return value is not None and value != "0"


def tracked_env_vars() -> List[str]:
    """Names of the environment variables read so far, in first-read order."""
    return list(_TRACKED_ENV_VARS)


def read_data_file(name: str) -> str:
    return (DATA_DIR / name).read_text(encoding="utf-8")


@functools.lru_cache(maxsize=None)
def get_version() -> str:
    """Version of the torch_build package itself"""
    try:
        return (PACKAGE_DIR / "version.txt").read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return "unknown"


@functools.lru_cache(maxsize=None)
def torch_version() -> str:
    """The libtorch version this package is built against"""
    return read_data_file("TORCH_VERSION").strip()


@functools.lru_cache(maxsize=None)
def libtorch_dir() -> Optional[Path]:
    """Value of `LIBTORCH`"""
    return rerun_env_path("LIBTORCH")


@functools.lru_cache(maxsize=None)
def libtorch_cxx11_abi() -> Optional[bool]:
    """
    Value of `LIBTORCH_CXX11_ABI`.

    Returns:
        True for "1", False for "0", None when unset or unrecognized.
    """
    value = rerun_env("LIBTORCH_CXX11_ABI")
    if value is None:
        return None
    if value == "1":
        return True
    if value == "0":
        return False
    warnings.warn(
        f'ignoring LIBTORCH_CXX11_ABI="{value}", expected "1" or "0"')
    return None


@functools.lru_cache(maxsize=None)
def use_pytorch() -> bool:
    """Whether `LIBTORCH_USE_PYTORCH` asks for the Python torch install"""
    return rerun_env_flag("LIBTORCH_USE_PYTORCH")


@functools.lru_cache(maxsize=None)
def bypass_version_check() -> bool:
    return rerun_env_flag("LIBTORCH_BYPASS_VERSION_CHECK")


@functools.lru_cache(maxsize=None)
def download_enabled() -> bool:
    """Whether libtorch may be downloaded as a last resort"""
    return rerun_env_flag("TORCH_BUILD_DOWNLOAD_LIBTORCH")


@functools.lru_cache(maxsize=None)
def torch_cuda_version() -> Optional[str]:
    """Raw value of `TORCH_CUDA_VERSION`"""
    return rerun_env("TORCH_CUDA_VERSION")


@functools.lru_cache(maxsize=None)
def torch_cuda_arch_list() -> Optional[str]:
    """Raw value of `TORCH_CUDA_ARCH_LIST`"""
    return rerun_env("TORCH_CUDA_ARCH_LIST")


@functools.lru_cache(maxsize=None)
def out_dir() -> Path:
    """
    Directory holding build outputs (ABI sentinel, downloaded archives).

    `TORCH_BUILD_OUT_DIR` wins, otherwise `build/torch_build` under the
    current working directory.
    """
    if build_dir := rerun_env_path("TORCH_BUILD_OUT_DIR"):
        return build_dir.resolve()
    return Path.cwd() / "build" / "torch_build"


@functools.lru_cache(maxsize=None)
def cudnn_home() -> Optional[Path]:
    """`CUDNN_HOME`, or `CUDNN_PATH` when `CUDNN_HOME` is not set"""
    return rerun_env_path("CUDNN_HOME") or rerun_env_path("CUDNN_PATH")


def _is_debian_like() -> bool:
    try:
        os_release = platform.freedesktop_os_release()
    except OSError:
        return False
    return os_release.get("ID") in ("debian", "ubuntu")


@functools.lru_cache(maxsize=None)
def rocm_home() -> Optional[Path]:
    """
    Get the ROCm installation path.

    Priority order:
    1. ROCM_HOME environment variable
    2. ROCM_PATH environment variable
    3. The installation owning `hipcc` found in PATH (Unix only)
    4. /opt/rocm if it exists (Unix only)
    """
    if rocm_path := rerun_env_path("ROCM_HOME") or rerun_env_path("ROCM_PATH"):
        return rocm_path

    if sys.platform == "win32":
        return None

    # hipcc lives in <rocm>/hip/bin
    if hipcc_bin := shutil.which("hipcc"):
        hip_dir = Path(hipcc_bin).resolve().parent.parent
        if hip_dir.name == "hip":
            return hip_dir.parent

    if DEFAULT_ROCM_HOME.exists():
        return DEFAULT_ROCM_HOME

    return None


@functools.lru_cache(maxsize=None)
def cuda_home() -> Optional[Path]:
    """
    Get the CUDA installation path.

    Priority order:
    1. CUDA_HOME environment variable
    2. CUDA_PATH environment variable
    3. The installation owning `nvcc` found in PATH (Linux and macOS)
    4. /usr/local/cuda if it exists (Debian and Ubuntu)
    """
    if cuda_path := rerun_env_path("CUDA_HOME") or rerun_env_path("CUDA_PATH"):
        return cuda_path

    if sys.platform.startswith("linux") or sys.platform == "darwin":
        if nvcc_bin := shutil.which("nvcc"):
            return Path(nvcc_bin).parent.parent

    if sys.platform.startswith("linux") and _is_debian_like():
        if DEFAULT_CUDA_HOME.exists():
            return DEFAULT_CUDA_HOME

    return None


def clear_caches() -> None:
    """Forget every memoized configuration value."""
    for cached in (
        get_version,
        torch_version,
        libtorch_dir,
        libtorch_cxx11_abi,
        use_pytorch,
        bypass_version_check,
        download_enabled,
        torch_cuda_version,
        torch_cuda_arch_list,
        out_dir,
        cudnn_home,
        rocm_home,
        cuda_home,
    ):
        cached.cache_clear()
