# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Backend dispatcher for subgridwd.phys.lookup.

Imports kernel functions from either the Triton or Torch backend
based on the SUBGRIDWD_BACKEND environment variable (default: triton).
"""

from subgridwd.phys._backend import KERNEL_BACKEND

if KERNEL_BACKEND == "torch":
    from subgridwd.phys._backend import adapt_torch_kernel
    from subgridwd.phys.torch.lookup import \
        compute_layer_thickness_lookup_kernel as \
        _compute_layer_thickness_lookup_kernel
    from subgridwd.phys.torch.lookup import \
        compute_ssh_lookup_kernel as _compute_ssh_lookup_kernel
    from subgridwd.phys.torch.lookup import \
        compute_wet_fraction_lookup_kernel as \
        _compute_wet_fraction_lookup_kernel
    compute_layer_thickness_lookup_kernel = adapt_torch_kernel(_compute_layer_thickness_lookup_kernel)
    compute_wet_fraction_lookup_kernel = adapt_torch_kernel(_compute_wet_fraction_lookup_kernel)
    compute_ssh_lookup_kernel = adapt_torch_kernel(_compute_ssh_lookup_kernel)
else:
    from subgridwd.phys.triton.lookup import (  # noqa: F401
        compute_layer_thickness_lookup_kernel, compute_ssh_lookup_kernel,
        compute_wet_fraction_lookup_kernel)
