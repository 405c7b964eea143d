"""setuptools build command for extensions configured by torch_build."""

import time

from torch.utils.cpp_extension import BuildExtension

from .probe import probe_libtorch


class LibtorchBuildExtension(BuildExtension):
    """
    Build extension that resolves libtorch before compiling anything.

    Resolution errors abort the build before the first compiler invocation.
    Sources ending in `.cu` are compiled with nvcc using the "nvcc" flags of
    each extension, see torch_build.extension.cuda_extension().
    """

    def run(self) -> None:
        library = probe_libtorch()
        print(f"Building {len(self.extensions)} extension(s) against libtorch in {library.lib_dir}")

        start_time = time.perf_counter()
        super().run()
        total_time = time.perf_counter() - start_time
        print(f"Time for build_ext: {total_time:.2f} seconds")
