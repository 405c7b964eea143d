"""
Locate libtorch and probe its capabilities.

The libtorch directory is searched in the following order, and the first
source that succeeds wins:

1. The `LIBTORCH` environment variable.
2. `/usr/lib/libtorch.so` on Linux, in which case `/usr` is used.
3. The torch package of a Python interpreter, when `LIBTORCH_USE_PYTORCH`
   is set.
4. A prebuilt archive downloaded into the build directory, when
   `TORCH_BUILD_DOWNLOAD_LIBTORCH` is set.

Every probe runs at most once per process.
"""

import functools
import os
import shutil
import subprocess
import sys
import warnings
from dataclasses import dataclass
from pathlib import Path
from subprocess import CalledProcessError
from typing import List, Optional, Tuple, Union

from . import download, env
from .errors import (
    LibtorchNotFound,
    ProbeScriptError,
    UnsupportedPlatform,
    VersionMismatch,
)
from .library import Api, CudaApi, CudaSplitApi, HipApi, Library, NoApi, is_hip

__all__ = [
    "ManualProbe",
    "SystemProbe",
    "PyTorchProbe",
    "DownloadProbe",
    "PythonConfig",
    "probe_libtorch",
    "find_libtorch_dir",
    "probe_cxx11_abi",
    "probe_api",
    "probe_pytorch",
    "parse_pytorch_probe_output",
    "probe_python",
    "parse_python_config_flags",
    "check_version",
]

SYSTEM_LIBTORCH = Path("/usr/lib/libtorch.so")
SYSTEM_PREFIX = Path("/usr")

PROBE_PYTORCH_SCRIPT = env.PACKAGE_DIR / "pysrc" / "probe_pytorch.py"
CXX11_ABI_MARKER_SOURCE = env.PACKAGE_DIR / "csrc" / "test_cxx11_abi.cpp"
CXX11_ABI_SENTINEL = "use_cxx11_abi"
CXX11_ABI_YES_TOKEN = "TORCH_BUILD_CXX11_ABI_YES"


@dataclass(frozen=True)
class ManualProbe:
    path: Path


@dataclass(frozen=True)
class SystemProbe:
    path: Path


@dataclass(frozen=True)
class PyTorchProbe:
    include_dirs: Tuple[Path, ...]
    lib_dir: Path
    use_cxx11_abi: bool


@dataclass(frozen=True)
class DownloadProbe:
    path: Path


Probe = Union[ManualProbe, SystemProbe, PyTorchProbe, DownloadProbe]


@dataclass(frozen=True)
class PythonConfig:
    """Flags needed to embed the Python interpreter, from python3-config."""

    includes: Tuple[Path, ...]
    link_searches: Tuple[Path, ...]
    libraries: Tuple[str, ...]


@functools.lru_cache(maxsize=None)
def probe_libtorch() -> Library:
    """
    Probe the installation directory of libtorch and its capabilities.

    Raises:
        LibtorchNotFound: If no source provides libtorch
    """
    probe = find_libtorch_dir()

    if isinstance(probe, PyTorchProbe):
        library = Library(
            include_dirs=probe.include_dirs,
            lib_dir=probe.lib_dir,
            api=probe_api(probe.lib_dir),
            use_cxx11_abi=probe.use_cxx11_abi,
        )
    else:
        libtorch_dir = probe.path
        lib_dir = libtorch_dir / "lib"
        api = probe_api(lib_dir)
        base = libtorch_dir / "include"
        include_dirs = [
            base,
            base / "torch" / "csrc" / "api" / "include",
            base / "TH",
            base / "THC",
        ]
        if is_hip(api):
            include_dirs.append(base / "thh")
        library = Library(
            include_dirs=tuple(include_dirs),
            lib_dir=lib_dir,
            api=api,
            use_cxx11_abi=probe_cxx11_abi(),
        )

    print(f"Using libtorch in {library.lib_dir} "
          f"(gpu api: {library.api.kind.value}, cxx11 abi: {int(library.use_cxx11_abi)})")
    return library


@functools.lru_cache(maxsize=None)
def find_libtorch_dir() -> Probe:
    """
    Locate the libtorch directory, downloading it as a last resort.

    The first successful result is kept for the rest of the process.

    Raises:
        LibtorchNotFound: If every source is exhausted
    """
    if libtorch_dir := env.libtorch_dir():
        return ManualProbe(libtorch_dir)

    if sys.platform.startswith("linux") and SYSTEM_LIBTORCH.exists():
        return SystemProbe(SYSTEM_PREFIX)

    if env.use_pytorch():
        return probe_pytorch()

    if env.download_enabled():
        return DownloadProbe(download.download_libtorch())

    raise LibtorchNotFound(
        "unable to find libtorch; set LIBTORCH to its directory, set "
        "LIBTORCH_USE_PYTORCH=1 to use the installed torch package, or set "
        "TORCH_BUILD_DOWNLOAD_LIBTORCH=1 to download it")


@functools.lru_cache(maxsize=None)
def get_cxx_bin() -> str:
    """
    Get the C++ compiler used for build-time probes.

    Raises:
        ProbeScriptError: If no compiler is found
    """
    if cxx := env.rerun_env("CXX"):
        return cxx
    for name in ("c++", "g++", "clang++"):
        if cxx_bin := shutil.which(name):
            return cxx_bin
    raise ProbeScriptError(
        "no C++ compiler found to detect the C++11 ABI; set CXX or "
        "LIBTORCH_CXX11_ABI")


def _detect_cxx11_abi_with_compiler() -> bool:
    command = [get_cxx_bin(), "-E", "-x", "c++", str(CXX11_ABI_MARKER_SOURCE)]
    try:
        result = subprocess.run(
            command, capture_output=True, check=True, text=True)
    except (CalledProcessError, OSError) as e:
        stderr = getattr(e, "stderr", None) or ""
        raise ProbeScriptError(
            f"Error when running {' '.join(command)}: {e}\n{stderr}") from e
    return any(line.strip() == CXX11_ABI_YES_TOKEN
               for line in result.stdout.splitlines())


def _read_cxx11_abi_sentinel(sentinel: Path, cxx: str) -> Optional[bool]:
    """The recorded ABI, or None when missing, malformed or from another compiler."""
    try:
        lines = sentinel.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    if len(lines) != 2 or lines[0] not in ("0", "1") or lines[1] != cxx:
        return None
    return lines[0] == "1"


def _detect_cxx11_abi_on_linux() -> bool:
    cxx = get_cxx_bin()
    sentinel = env.out_dir() / CXX11_ABI_SENTINEL
    if (use_cxx11_abi := _read_cxx11_abi_sentinel(sentinel, cxx)) is not None:
        return use_cxx11_abi

    use_cxx11_abi = _detect_cxx11_abi_with_compiler()
    sentinel.parent.mkdir(parents=True, exist_ok=True)
    # value, then the compiler it was detected with
    sentinel.write_text(f"{int(use_cxx11_abi)}\n{cxx}\n", encoding="utf-8")
    return use_cxx11_abi


@functools.lru_cache(maxsize=None)
def probe_cxx11_abi() -> bool:
    """
    Whether the host uses the C++11 ABI, i.e. the value of the
    `_GLIBCXX_USE_CXX11_ABI` macro.

    `LIBTORCH_CXX11_ABI` wins when set. Otherwise macOS and Windows always
    use the new ABI, and Linux asks the C++ compiler once per build
    directory and compiler.
    """
    if (use_cxx11_abi := env.libtorch_cxx11_abi()) is not None:
        return use_cxx11_abi

    if sys.platform.startswith("linux"):
        return _detect_cxx11_abi_on_linux()
    # TODO: check _MSVC_LANG on Windows
    return True


def _library_file(lib_dir: Path, name: str) -> Optional[Path]:
    if sys.platform.startswith("linux"):
        return lib_dir / f"lib{name}.so"
    if sys.platform == "win32":
        return lib_dir / f"{name}.dll"
    return None


def _has_library_file(lib_dir: Path, name: str) -> bool:
    path = _library_file(lib_dir, name)
    return path is not None and path.exists()


def probe_api(lib_dir: Path) -> Api:
    """
    Detect which GPU runtime libtorch in lib_dir was built with.

    A configured toolkit home only counts when the matching libtorch
    runtime library exists in lib_dir.
    """
    rocm_home = env.rocm_home()
    if rocm_home is not None and _has_library_file(lib_dir, "torch_hip"):
        return HipApi(rocm_home=rocm_home, miopen_home=rocm_home / "miopen")

    cuda_home = env.cuda_home()
    if cuda_home is None:
        return NoApi()

    if (_has_library_file(lib_dir, "torch_cuda_cu")
            and _has_library_file(lib_dir, "torch_cuda_cpp")):
        return CudaSplitApi(cuda_home=cuda_home, cudnn_home=env.cudnn_home())
    if _has_library_file(lib_dir, "torch_cuda"):
        return CudaApi(cuda_home=cuda_home, cudnn_home=env.cudnn_home())

    warnings.warn(
        f'CUDA_HOME is set to "{cuda_home}", but no CUDA runtime found for '
        f'libtorch in "{lib_dir}"')
    return NoApi()


def find_python_interpreter() -> str:
    if sys.executable:
        return sys.executable
    if sys.platform.startswith("linux") or sys.platform == "darwin":
        return "python" if os.environ.get("VIRTUAL_ENV") else "python3"
    if sys.platform == "win32":
        return "python.exe"
    raise UnsupportedPlatform(f"unsupported OS: {sys.platform}")


def parse_pytorch_probe_output(stdout: str) -> PyTorchProbe:
    """
    Parse the `KEY: value` lines printed by the torch probe script.

    Raises:
        ProbeScriptError: If LIBTORCH_CXX11 or LIBTORCH_LIB is missing or
            malformed
        VersionMismatch: If LIBTORCH_VERSION does not match
    """
    use_cxx11_abi = None
    include_dirs: List[Path] = []
    lib_dir = None

    for line in stdout.splitlines():
        if (version := _strip_key(line, "LIBTORCH_VERSION")) is not None:
            check_version(version)
        elif (value := _strip_key(line, "LIBTORCH_CXX11")) is not None:
            if value not in ("True", "False"):
                raise ProbeScriptError(f"error parsing this line '{line}'")
            use_cxx11_abi = value == "True"
        elif (path := _strip_key(line, "LIBTORCH_INCLUDE")) is not None:
            include_dirs.append(_probe_path(line, path))
        elif (path := _strip_key(line, "LIBTORCH_LIB")) is not None:
            if lib_dir is not None:
                raise ProbeScriptError(
                    f"more than one LIBTORCH_LIB returned by python: {lib_dir}, {path}")
            lib_dir = _probe_path(line, path)

    if use_cxx11_abi is None:
        raise ProbeScriptError(
            f"no LIBTORCH_CXX11 returned by python:\n{stdout}")
    if lib_dir is None:
        raise ProbeScriptError(f"no LIBTORCH_LIB returned by python:\n{stdout}")

    return PyTorchProbe(
        include_dirs=tuple(include_dirs),
        lib_dir=lib_dir,
        use_cxx11_abi=use_cxx11_abi,
    )


def _strip_key(line: str, key: str) -> Optional[str]:
    prefix = f"{key}:"
    if line.startswith(f"{prefix} ") or line.rstrip() == prefix:
        return line[len(prefix):].strip()
    return None


def _probe_path(line: str, value: str) -> Path:
    if not value:
        raise ProbeScriptError(f"error parsing this line '{line}'")
    return Path(value)


def probe_pytorch() -> PyTorchProbe:
    """
    Ask a Python interpreter where its torch package keeps libtorch.

    Raises:
        ProbeScriptError: If the probe script fails or its output is incomplete
    """
    python = find_python_interpreter()
    script = PROBE_PYTORCH_SCRIPT.read_text(encoding="utf-8")
    try:
        result = subprocess.run(
            [python, "-c", script], capture_output=True, check=True, text=True)
    except (CalledProcessError, OSError) as e:
        stderr = getattr(e, "stderr", None) or ""
        raise ProbeScriptError(f"error running {python}: {e}\n{stderr}") from e
    return parse_pytorch_probe_output(result.stdout)


def parse_python_config_flags(output: str) -> PythonConfig:
    """Collect -I, -L and -l flags; other flags are ignored with a warning."""
    includes: List[Path] = []
    link_searches: List[Path] = []
    libraries: List[str] = []

    for flag in output.split():
        prefix, value = flag[:2], flag[2:]
        if prefix == "-I" and value:
            includes.append(Path(value))
        elif prefix == "-L" and value:
            link_searches.append(Path(value))
        elif prefix == "-l" and value:
            libraries.append(value)
        else:
            warnings.warn(f"ignore `python3-config` flag {flag}")

    return PythonConfig(
        includes=tuple(includes),
        link_searches=tuple(link_searches),
        libraries=tuple(libraries),
    )


@functools.lru_cache(maxsize=None)
def probe_python() -> PythonConfig:
    """
    Flags to embed the Python interpreter, from `python3-config`.

    Raises:
        ProbeScriptError: If python3-config cannot be run
    """
    command = ["python3-config", "--includes", "--ldflags", "--embed"]
    try:
        result = subprocess.run(
            command, capture_output=True, check=True, text=True)
    except (CalledProcessError, OSError) as e:
        raise ProbeScriptError("unable to run `python3-config`") from e
    return parse_python_config_flags(result.stdout)


def check_version(version: str) -> None:
    """
    Check a reported torch version against the supported one.

    Build tags such as "+cpu" or "+cu117" are ignored.

    Raises:
        VersionMismatch: If the versions differ and the check is not bypassed
    """
    if env.bypass_version_check():
        return

    version = version.strip().split("+", 1)[0]
    expected = env.torch_version()
    if version != expected:
        raise VersionMismatch(
            f"this torch_build version expects PyTorch {expected}, got {version}, "
            "this check can be bypassed by setting the "
            "LIBTORCH_BYPASS_VERSION_CHECK environment variable")


def clear_caches() -> None:
    probe_libtorch.cache_clear()
    find_libtorch_dir.cache_clear()
    probe_cxx11_abi.cache_clear()
    probe_python.cache_clear()
    get_cxx_bin.cache_clear()
