"""Report the libtorch bundled with the installed torch package.

Run by torch_build in a separate interpreter. Each output line is
`KEY: value`.
"""

import torch
from torch.utils import cpp_extension

print(f"LIBTORCH_VERSION: {torch.__version__}")
print(f"LIBTORCH_CXX11: {torch._C._GLIBCXX_USE_CXX11_ABI}")
for include_path in cpp_extension.include_paths():
    print(f"LIBTORCH_INCLUDE: {include_path}")
for library_path in cpp_extension.library_paths():
    print(f"LIBTORCH_LIB: {library_path}")
