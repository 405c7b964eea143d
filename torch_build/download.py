"""Download a prebuilt libtorch release archive and unpack it."""

import shutil
import stat
import sys
import zipfile
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import List, Optional

import requests

from . import env
from .errors import DownloadError, UnsafeArchiveError, UnsupportedPlatform

__all__ = [
    "LIBTORCH_BASE_URL",
    "torch_cuda_tag",
    "libtorch_url",
    "fetch",
    "extract_zip",
    "download_libtorch",
]

LIBTORCH_BASE_URL = "https://download.pytorch.org/libtorch"

# Releases whose archive names carry the build tag explicitly
_TAGGED_RELEASES = ("cpu", "cu92", "cu101", "cu111")

_CHUNK_SIZE = 1 << 20


def torch_cuda_tag(value: Optional[str] = None) -> str:
    """
    Normalize a CUDA version hint into a release tag.

    "11.7", "cu117" and "CU11.7.1" all become "cu117"; no hint means "cpu".
    """
    if value is None:
        value = env.torch_cuda_version()
    if value is None:
        return "cpu"
    value = value.strip().lower()
    if value.startswith("cu"):
        value = value[2:]
    return "cu" + "".join(value.split(".")[:2])


def libtorch_url(version: Optional[str] = None,
                 cuda_version: Optional[str] = None) -> str:
    """
    URL of the prebuilt libtorch archive for this platform.

    Raises:
        UnsupportedPlatform: On macOS with a CUDA version requested, or on a
            platform without prebuilt binaries
    """
    if version is None:
        version = env.torch_version()
    if cuda_version is None:
        cuda_version = env.torch_cuda_version()

    if sys.platform == "darwin":
        if cuda_version is not None:
            raise UnsupportedPlatform(
                "CUDA was specified with TORCH_CUDA_VERSION, but pre-built "
                "binaries with CUDA are only available for Linux and Windows, "
                f"not: {cuda_version}")
        return f"{LIBTORCH_BASE_URL}/cpu/libtorch-macos-{version}.zip"

    tag = torch_cuda_tag(cuda_version) if cuda_version is not None else "cpu"
    suffix = f"%2B{tag}" if tag in _TAGGED_RELEASES else ""

    if sys.platform.startswith("linux"):
        return (f"{LIBTORCH_BASE_URL}/{tag}/"
                f"libtorch-cxx11-abi-shared-with-deps-{version}{suffix}.zip")
    if sys.platform == "win32":
        return (f"{LIBTORCH_BASE_URL}/{tag}/"
                f"libtorch-win-shared-with-deps-{version}{suffix}.zip")
    raise UnsupportedPlatform(
        f"no pre-built libtorch is available for {sys.platform}")


def fetch(url: str, target_file: Path) -> Path:
    """Stream the body of a GET request into target_file."""
    print(f"Downloading {url} -> {target_file}")
    try:
        with requests.get(url, stream=True) as response:
            response.raise_for_status()
            with open(target_file, "wb") as f:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    f.write(chunk)
    except (requests.RequestException, OSError) as e:
        raise DownloadError(f"unable to download {url}: {e}") from e
    return target_file


def _enclosed_name(member_name: str) -> Path:
    """Relative path of an archive member, rejecting anything escaping the root."""
    relative = PurePosixPath(member_name.replace("\\", "/"))
    # drive prefixes like "C:" escape the destination on Windows
    if relative.is_absolute() or PureWindowsPath(member_name).drive or not relative.parts:
        raise UnsafeArchiveError(
            f"unable to extract zip file due to unenclosed name '{member_name}'")
    if any(part in ("", "..") for part in relative.parts):
        raise UnsafeArchiveError(
            f"unable to extract zip file due to unenclosed name '{member_name}'")
    return Path(*relative.parts)


def extract_zip(archive_path: Path, destination: Path) -> List[Path]:
    """
    Extract a ZIP archive, preserving entry paths.

    Returns:
        The extracted regular files

    Raises:
        UnsafeArchiveError: If an entry is absolute, climbs out of the
            destination or is a symbolic link
    """
    destination.mkdir(parents=True, exist_ok=True)
    extracted = []
    with zipfile.ZipFile(archive_path) as archive:
        members = [(member, _enclosed_name(member.filename))
                   for member in archive.infolist()]
        for member, _ in members:
            mode = (member.external_attr >> 16) & 0xFFFF
            if stat.S_ISLNK(mode):
                raise UnsafeArchiveError(
                    f"unsafe link detected in archive: {member.filename}")

        for index, (member, member_path) in enumerate(members):
            target_path = destination / member_path
            if member.is_dir():
                target_path.mkdir(parents=True, exist_ok=True)
                continue
            target_path.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member, "r") as source, open(target_path, "wb") as target:
                shutil.copyfileobj(source, target)
            print(f'File {index} extracted to "{target_path}" ({member.file_size} bytes)')
            extracted.append(target_path)
    return extracted


def download_libtorch(build_dir: Optional[Path] = None) -> Path:
    """
    Download and extract libtorch under the build output directory.

    Returns:
        The extracted libtorch directory
    """
    if build_dir is None:
        build_dir = env.out_dir()
    libtorch_dir = build_dir / "libtorch"
    libtorch_dir.mkdir(parents=True, exist_ok=True)

    archive_path = libtorch_dir / f"v{env.torch_version()}.zip"
    fetch(libtorch_url(), archive_path)
    try:
        extract_zip(archive_path, libtorch_dir)
    except zipfile.BadZipFile as e:
        raise DownloadError(f"{archive_path} is not a valid zip archive: {e}") from e
    return libtorch_dir / "libtorch"
