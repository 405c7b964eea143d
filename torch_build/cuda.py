"""
CUDA architecture handling.

Architectures are written as `MAJOR.MINOR` with an optional `+PTX` suffix,
and lists of them are `;` separated, e.g. `7.0;7.5;8.0;8.6+PTX`. Named
presets such as `Ampere` expand to their architectures through the bundled
alias table.
"""

import functools
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Tuple

from . import env
from .errors import DeviceQueryError, InvalidArchSpec, NoDeviceFound

__all__ = [
    "CudaArch",
    "cuda_arch_aliases",
    "parse_arch_list",
    "supported_arches",
    "max_supported_arch",
    "host_arches",
    "nvcc_arch_flags",
]

_CUDA_ARCH_PATTERN = re.compile(r"^(\d+)\.(\d+)(\+PTX)?$")


@dataclass(frozen=True, order=True)
class CudaArch:
    """A CUDA compute capability, ordered by (major, minor, with_ptx)."""

    major: int
    minor: int
    with_ptx: bool = False

    @classmethod
    def parse(cls, text: str) -> "CudaArch":
        match = _CUDA_ARCH_PATTERN.match(text)
        if match is None:
            raise InvalidArchSpec(f'invalid CUDA arch "{text}"')
        return cls(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            with_ptx=match.group(3) is not None,
        )

    @property
    def version(self) -> Tuple[int, int]:
        return (self.major, self.minor)

    def nvcc_flag(self) -> str:
        """
        Generate the nvcc flag for this architecture.

        For version `X.Y` the flag is
        `-gencode=arch=compute_XY,code=sm_XY`, or
        `-gencode=arch=compute_XY,code=compute_XY` when PTX is embedded.
        """
        number = f"{self.major}{self.minor}"
        code_kind = "compute" if self.with_ptx else "sm"
        return f"-gencode=arch=compute_{number},code={code_kind}_{number}"

    def __str__(self) -> str:
        suffix = "+PTX" if self.with_ptx else ""
        return f"{self.major}.{self.minor}{suffix}"


@functools.lru_cache(maxsize=None)
def cuda_arch_aliases() -> Dict[str, Tuple[CudaArch, ...]]:
    """Load the bundled table of named architecture presets"""
    aliases = {}
    for line in env.read_data_file("CUDA_ARCH_ALIASES").splitlines():
        if not line.strip():
            continue
        name, arch_list = line.split("\t")
        aliases[name] = tuple(CudaArch.parse(token)
                              for token in arch_list.split(";"))
    return aliases


def parse_arch_list(text: str) -> List[CudaArch]:
    """
    Parse a `;` separated list of architectures.

    Each token is either an alias from the bundled table, which expands to
    its architectures in order, or a literal like `8.6` or `9.0+PTX`.

    Raises:
        InvalidArchSpec: If a token is neither an alias nor a valid literal
    """
    aliases = cuda_arch_aliases()
    arches: List[CudaArch] = []
    for token in text.strip().split(";"):
        token = token.strip()
        if token in aliases:
            arches.extend(aliases[token])
        else:
            arches.append(CudaArch.parse(token))
    return arches


@functools.lru_cache(maxsize=None)
def supported_arches() -> frozenset:
    """
    Architectures the toolkit is configured to emit code for.

    Taken from `TORCH_CUDA_ARCH_LIST` when set, otherwise from the bundled
    default list.
    """
    if arch_list := env.torch_cuda_arch_list():
        try:
            return frozenset(parse_arch_list(arch_list))
        except InvalidArchSpec as e:
            raise InvalidArchSpec(
                f'unable to parse environment variable TORCH_CUDA_ARCH_LIST = "{arch_list}": {e}') from e
    return frozenset(parse_arch_list(env.read_data_file("TORCH_CUDA_ARCH_LIST")))


def max_supported_arch() -> Tuple[int, int]:
    """The architecture ceiling as (major, minor)"""
    return max(arch.version for arch in supported_arches())


def _torch_cuda() -> Any:
    import torch.cuda  # noqa: PLC0415

    return torch.cuda


@functools.lru_cache(maxsize=None)
def host_arches() -> Tuple[CudaArch, ...]:
    """
    Architectures of the GPUs installed on this host.

    Each device capability is clamped to :func:`max_supported_arch`, the
    results are deduplicated and sorted, and only the greatest one embeds
    PTX.

    Raises:
        NoDeviceFound: If no CUDA device is visible
        DeviceQueryError: If the device API fails
    """
    ceiling = max_supported_arch()

    try:
        cuda = _torch_cuda()
        device_count = cuda.device_count()
        versions = {
            min(tuple(cuda.get_device_capability(index)), ceiling)
            for index in range(device_count)
        }
    except (ImportError, RuntimeError, AssertionError) as e:
        raise DeviceQueryError(str(e)) from e

    if not versions:
        raise NoDeviceFound("no CUDA device found on this host")

    arches = sorted(CudaArch(major, minor) for major, minor in versions)
    arches[-1] = replace(arches[-1], with_ptx=True)
    return tuple(arches)


def nvcc_arch_flags(arches) -> List[str]:
    return [arch.nvcc_flag() for arch in arches]


def clear_caches() -> None:
    cuda_arch_aliases.cache_clear()
    supported_arches.cache_clear()
    host_arches.cache_clear()
