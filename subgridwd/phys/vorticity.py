# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Backend dispatcher for subgridwd.phys.vorticity.

Imports kernel functions from either the Triton or Torch backend
based on the SUBGRIDWD_BACKEND environment variable (default: triton).
"""

from subgridwd.phys._backend import KERNEL_BACKEND

if KERNEL_BACKEND == "torch":
    from subgridwd.phys._backend import adapt_torch_kernel
    from subgridwd.phys.torch.vorticity import \
        compute_vorticity_kernel as _compute_vorticity_kernel
    from subgridwd.phys.torch.vorticity import \
        compute_vorticity_log_kernel as _compute_vorticity_log_kernel
    compute_vorticity_kernel = adapt_torch_kernel(_compute_vorticity_kernel)
    compute_vorticity_log_kernel = adapt_torch_kernel(_compute_vorticity_log_kernel, compile=False)
else:
    from subgridwd.phys.triton.vorticity import (  # noqa: F401
        compute_vorticity_kernel, compute_vorticity_log_kernel)
