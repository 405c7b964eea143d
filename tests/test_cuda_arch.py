""" test CUDA architecture parsing, aliases and host detection."""

import pytest

from torch_build import cuda
from torch_build.cuda import CudaArch, parse_arch_list
from torch_build.errors import DeviceQueryError, InvalidArchSpec, NoDeviceFound


class FakeCuda:
    """Stands in for torch.cuda with fixed device capabilities."""

    def __init__(self, capabilities):
        self.capabilities = capabilities
        self.queries = 0

    def device_count(self):
        self.queries += 1
        return len(self.capabilities)

    def get_device_capability(self, index):
        return self.capabilities[index]


@pytest.mark.parametrize("text,expected", [
    ("8.6", CudaArch(8, 6)),
    ("9.0+PTX", CudaArch(9, 0, with_ptx=True)),
    ("10.0", CudaArch(10, 0)),
    ("3.7", CudaArch(3, 7)),
])
def test_parse_arch(text, expected):
    arch = CudaArch.parse(text)
    assert arch == expected
    assert str(arch) == text


@pytest.mark.parametrize("text", ["", "8", "8.x", "sm_80", "8.0+ptx", " 8.0", "8.0+PTX+PTX"])
def test_parse_invalid_arch(text):
    with pytest.raises(InvalidArchSpec, match="invalid CUDA arch"):
        CudaArch.parse(text)


def test_arch_ordering():
    assert CudaArch(8, 0) < CudaArch(8, 0, with_ptx=True) < CudaArch(8, 6)
    assert CudaArch(7, 5) < CudaArch(10, 0)
    assert max([CudaArch(8, 6), CudaArch(9, 0), CudaArch(7, 0)]).version == (9, 0)


def test_nvcc_flags():
    flags = cuda.nvcc_arch_flags(parse_arch_list("8.0;9.0+PTX"))
    assert flags == [
        "-gencode=arch=compute_80,code=sm_80",
        "-gencode=arch=compute_90,code=compute_90",
    ]


def test_parse_arch_list_strips_tokens():
    assert parse_arch_list(" 7.5 ; 8.6+PTX\n") == [CudaArch(7, 5), CudaArch(8, 6, with_ptx=True)]


@pytest.mark.parametrize("text", ["", "8.0;;9.0", "8.0;", "8.0;Amper", "8.0,9.0"])
def test_parse_invalid_arch_list(text):
    with pytest.raises(InvalidArchSpec):
        parse_arch_list(text)


def test_alias_expansion():
    assert parse_arch_list("Ampere") == [CudaArch(8, 0), CudaArch(8, 6, with_ptx=True)]
    assert parse_arch_list("Kepler+Tesla") == [CudaArch(3, 7)]
    assert parse_arch_list("7.0;Ampere;Hopper") == (
        parse_arch_list("7.0") + parse_arch_list("Ampere") + parse_arch_list("Hopper"))


def test_every_alias_is_valid():
    aliases = cuda.cuda_arch_aliases()
    assert {"Kepler", "Maxwell", "Pascal", "Volta", "Turing", "Ampere", "Ada", "Hopper"} <= set(aliases)
    for arches in aliases.values():
        assert arches
        assert all(isinstance(arch, CudaArch) for arch in arches)


def test_default_ceiling():
    assert cuda.max_supported_arch() == (9, 0)


def test_ceiling_from_env(monkeypatch):
    monkeypatch.setenv("TORCH_CUDA_ARCH_LIST", "7.0;Turing")
    assert cuda.supported_arches() == frozenset([CudaArch(7, 0), CudaArch(7, 5, with_ptx=True)])
    assert cuda.max_supported_arch() == (7, 5)


def test_invalid_ceiling_from_env(monkeypatch):
    monkeypatch.setenv("TORCH_CUDA_ARCH_LIST", "7.0;sm_75")
    with pytest.raises(InvalidArchSpec, match="TORCH_CUDA_ARCH_LIST"):
        cuda.max_supported_arch()


def test_host_arches_dedupes_and_marks_ptx(monkeypatch):
    fake = FakeCuda([(8, 6), (7, 5), (8, 6)])
    monkeypatch.setattr(cuda, "_torch_cuda", lambda: fake)
    assert cuda.host_arches() == (CudaArch(7, 5), CudaArch(8, 6, with_ptx=True))


def test_host_arches_clamped_to_ceiling(monkeypatch):
    monkeypatch.setenv("TORCH_CUDA_ARCH_LIST", "7.0;8.0")
    monkeypatch.setattr(cuda, "_torch_cuda", lambda: FakeCuda([(9, 0), (7, 5), (8, 9)]))
    arches = cuda.host_arches()
    assert arches == (CudaArch(7, 5), CudaArch(8, 0, with_ptx=True))
    assert all(arch.version <= (8, 0) for arch in arches)
    assert sum(arch.with_ptx for arch in arches) == 1


def test_host_arches_single_device(monkeypatch):
    monkeypatch.setattr(cuda, "_torch_cuda", lambda: FakeCuda([(12, 0)]))
    assert cuda.host_arches() == (CudaArch(9, 0, with_ptx=True),)


def test_host_arches_memoized(monkeypatch):
    fake = FakeCuda([(8, 0)])
    monkeypatch.setattr(cuda, "_torch_cuda", lambda: fake)
    assert cuda.host_arches() is cuda.host_arches()
    assert fake.queries == 1


def test_host_arches_without_device(monkeypatch):
    monkeypatch.setattr(cuda, "_torch_cuda", lambda: FakeCuda([]))
    with pytest.raises(NoDeviceFound):
        cuda.host_arches()


def test_host_arches_device_query_failure(monkeypatch):
    class BrokenCuda(FakeCuda):
        def device_count(self):
            raise RuntimeError("CUDA driver initialization failed")

    monkeypatch.setattr(cuda, "_torch_cuda", lambda: BrokenCuda([]))
    with pytest.raises(DeviceQueryError, match="driver initialization failed"):
        cuda.host_arches()


def test_host_arches_without_torch(monkeypatch):
    def missing_torch():
        raise ImportError("No module named 'torch'")

    monkeypatch.setattr(cuda, "_torch_cuda", missing_torch)
    with pytest.raises(DeviceQueryError):
        cuda.host_arches()
