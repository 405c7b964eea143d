""" test configuration read from the environment."""

import sys
from pathlib import Path

import pytest

from torch_build import env


def test_out_dir_from_env(tmp_path):
    assert env.out_dir() == (tmp_path / "out").resolve()


def test_out_dir_default(monkeypatch, tmp_path):
    monkeypatch.delenv("TORCH_BUILD_OUT_DIR")
    monkeypatch.chdir(tmp_path)
    assert env.out_dir() == tmp_path.resolve() / "build" / "torch_build"


def test_flags(monkeypatch):
    assert not env.use_pytorch()
    env.clear_caches()
    monkeypatch.setenv("LIBTORCH_USE_PYTORCH", "0")
    assert not env.use_pytorch()
    env.clear_caches()
    monkeypatch.setenv("LIBTORCH_USE_PYTORCH", "1")
    assert env.use_pytorch()


def test_cuda_home_precedence(monkeypatch):
    monkeypatch.setenv("CUDA_PATH", "/opt/cuda-path")
    assert env.cuda_home() == Path("/opt/cuda-path")
    env.clear_caches()
    monkeypatch.setenv("CUDA_HOME", "/opt/cuda-home")
    assert env.cuda_home() == Path("/opt/cuda-home")


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="nvcc lookup on Linux")
def test_cuda_home_from_nvcc(monkeypatch):
    monkeypatch.setattr(env.shutil, "which", lambda name: "/opt/cuda-12.1/bin/nvcc" if name == "nvcc" else None)
    assert env.cuda_home() == Path("/opt/cuda-12.1")


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="Debian default location")
def test_cuda_home_debian_default(monkeypatch, tmp_path):
    default = tmp_path / "usr-local-cuda"
    default.mkdir()
    monkeypatch.setattr(env, "DEFAULT_CUDA_HOME", default)
    assert env.cuda_home() is None
    env.clear_caches()
    monkeypatch.setattr(env, "_is_debian_like", lambda: True)
    assert env.cuda_home() == default


def test_rocm_home_precedence(monkeypatch):
    monkeypatch.setenv("ROCM_PATH", "/opt/rocm-path")
    assert env.rocm_home() == Path("/opt/rocm-path")
    env.clear_caches()
    monkeypatch.setenv("ROCM_HOME", "/opt/rocm-home")
    assert env.rocm_home() == Path("/opt/rocm-home")


@pytest.mark.skipif(sys.platform == "win32", reason="hipcc lookup on Unix")
def test_rocm_home_from_hipcc(monkeypatch, tmp_path):
    hipcc = tmp_path / "rocm-5.7" / "hip" / "bin" / "hipcc"
    hipcc.parent.mkdir(parents=True)
    hipcc.touch()
    monkeypatch.setattr(env.shutil, "which", lambda name: str(hipcc) if name == "hipcc" else None)
    assert env.rocm_home() == (tmp_path / "rocm-5.7").resolve()


def test_no_toolkits():
    assert env.cuda_home() is None
    assert env.rocm_home() is None
    assert env.cudnn_home() is None


def test_cudnn_home_precedence(monkeypatch):
    monkeypatch.setenv("CUDNN_PATH", "/opt/cudnn-path")
    monkeypatch.setenv("CUDNN_HOME", "/opt/cudnn-home")
    assert env.cudnn_home() == Path("/opt/cudnn-home")


def test_tracked_env_vars_in_first_read_order():
    env.libtorch_dir()
    env.cudnn_home()
    env.clear_caches()
    env.libtorch_dir()
    assert env.tracked_env_vars() == ["LIBTORCH", "CUDNN_HOME", "CUDNN_PATH"]


@pytest.mark.parametrize("value,expected", [("1", True), ("0", False)])
def test_cxx11_abi_override(monkeypatch, value, expected):
    monkeypatch.setenv("LIBTORCH_CXX11_ABI", value)
    assert env.libtorch_cxx11_abi() is expected


def test_invalid_cxx11_abi_override(monkeypatch):
    monkeypatch.setenv("LIBTORCH_CXX11_ABI", "true")
    with pytest.warns(UserWarning, match="expected \"1\" or \"0\""):
        assert env.libtorch_cxx11_abi() is None
