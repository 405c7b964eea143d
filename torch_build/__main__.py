"""
Report how libtorch resolves in the current environment.

    python -m torch_build [--gpu | --no-gpu] [--python] [--arches] [--directives]
"""

import argparse
import sys
from typing import List, Optional

from . import env
from .cuda import host_arches
from .errors import TorchBuildError
from .extension import link_directives
from .library import cuda_home_dir, cudnn_home_dir
from .probe import probe_libtorch


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="python -m torch_build", description=__doc__.strip().splitlines()[0])
    gpu = ap.add_mutually_exclusive_group()
    gpu.add_argument("--gpu", dest="use_gpu", action="store_const", const=True,
                     help="require the GPU runtime")
    gpu.add_argument("--no-gpu", dest="use_gpu", action="store_const", const=False,
                     help="ignore the GPU runtime")
    ap.add_argument("--python", action="store_true", help="also link the Python bindings")
    ap.add_argument("--arches", action="store_true", help="detect CUDA architectures of this host")
    ap.add_argument("--directives", action="store_true", help="print linker directives")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        library = probe_libtorch()
        print(f"torch_build {env.get_version()} (libtorch {env.torch_version()})")
        print(f"lib dir: {library.lib_dir}")
        print(f"gpu api: {library.api.kind.value}")
        if cuda_dir := cuda_home_dir(library.api):
            print(f"cuda home: {cuda_dir}")
        if cudnn_dir := cudnn_home_dir(library.api):
            print(f"cudnn home: {cudnn_dir}")
        print(f"cxx11 abi: {int(library.use_cxx11_abi)}")
        print("include paths:")
        for path in library.include_paths(args.use_gpu):
            print(f"  {path}")
        print("link paths:")
        for path in library.link_paths(args.use_gpu):
            print(f"  {path}")
        print(f"libraries: {' '.join(library.libraries(args.use_gpu, args.python))}")

        if args.arches:
            for arch in host_arches():
                print(f"arch {arch}: {arch.nvcc_flag()}")

        if args.directives:
            for directive in link_directives(args.use_gpu, args.python):
                print(directive)
    except TorchBuildError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
