"""Installation script for torch_build."""

import setuptools

from pathlib import Path


current_file_path = Path(__file__).parent.resolve()


def get_version() -> str:
    """Version string from torch_build/version.txt"""
    version_file = current_file_path / "torch_build" / "version.txt"
    try:
        return version_file.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return "unknown"


if __name__ == "__main__":

    with open(current_file_path / "README.md", encoding="utf-8") as f:
        long_description = f.read()

    # Configure package
    setuptools.setup(
        name="torch_build",
        include_package_data=True,
        package_data={
            "torch_build": [
                "version.txt",
                "data/*",
                "pysrc/*.py",
                "csrc/*.cpp",
            ]
        },
        packages=setuptools.find_packages(
            where=".", include=["torch_build", "torch_build.*"]),
        version=get_version(),
        description="Locate libtorch at build time and link native extensions against it",
        long_description=long_description,
        long_description_content_type="text/markdown",
        classifiers=[
            "Programming Language :: Python :: 3",
            "Operating System :: POSIX :: Linux",
            "Operating System :: MacOS",
            "Operating System :: Microsoft :: Windows",
        ],
        python_requires=">=3.10",
        install_requires=[
            "torch>=2.0",
            "requests>=2.28",
            "setuptools>=61",
        ],
        extras_require={
            "test": ["pytest>=7.0"],
        },
    )
