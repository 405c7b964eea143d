"""Shared fixtures: every test starts from a clean build environment."""

import pytest

import torch_build
from torch_build import env, probe

BUILD_ENV_VARS = (
    "LIBTORCH",
    "LIBTORCH_CXX11_ABI",
    "LIBTORCH_USE_PYTORCH",
    "LIBTORCH_BYPASS_VERSION_CHECK",
    "TORCH_BUILD_DOWNLOAD_LIBTORCH",
    "TORCH_BUILD_OUT_DIR",
    "TORCH_CUDA_VERSION",
    "TORCH_CUDA_ARCH_LIST",
    "CUDA_HOME",
    "CUDA_PATH",
    "CUDNN_HOME",
    "CUDNN_PATH",
    "ROCM_HOME",
    "ROCM_PATH",
    "CXX",
)


@pytest.fixture(autouse=True)
def clean_build_env(monkeypatch, tmp_path):
    """Hide the host toolchains and forget every memoized probe."""
    for name in BUILD_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TORCH_BUILD_OUT_DIR", str(tmp_path / "out"))

    monkeypatch.setattr(env, "_TRACKED_ENV_VARS", [])
    monkeypatch.setattr(env.shutil, "which", lambda name: None)
    monkeypatch.setattr(env, "_is_debian_like", lambda: False)
    monkeypatch.setattr(env, "DEFAULT_ROCM_HOME", tmp_path / "missing-rocm")
    monkeypatch.setattr(env, "DEFAULT_CUDA_HOME", tmp_path / "missing-cuda")
    monkeypatch.setattr(probe, "SYSTEM_LIBTORCH", tmp_path / "missing-libtorch.so")

    torch_build.clear_caches()
    yield
    torch_build.clear_caches()


@pytest.fixture
def make_libtorch(tmp_path):
    """Create an unpacked libtorch tree holding the given runtime libraries."""

    def _make(*libraries, name="libtorch"):
        root = tmp_path / name
        (root / "lib").mkdir(parents=True, exist_ok=True)
        (root / "include").mkdir(exist_ok=True)
        for library in libraries:
            (root / "lib" / f"lib{library}.so").touch()
        return root

    return _make


@pytest.fixture
def cuda_toolkit(tmp_path):
    """A CUDA toolkit directory with a lib64 folder."""
    home = tmp_path / "cuda"
    (home / "include").mkdir(parents=True)
    (home / "lib64").mkdir()
    return home
