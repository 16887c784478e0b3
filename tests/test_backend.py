# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import pytest
import torch

from subgridwd.phys import _backend
from subgridwd.phys._backend import TorchAdapter, adapt_torch_kernel


def _scale_kernel(values, out, factor):
    out.copy_(values * factor)


def test_adapter_maps_triton_style_kwargs():
    kernel = adapt_torch_kernel(_scale_kernel, compile=False)
    values = torch.tensor([1.0, 2.0])
    out = torch.zeros(2)
    kernel[(1,)](values_ptr=values, out_ptr=out, factor=3.0, BLOCK_SIZE=128, num_elements=2)
    torch.testing.assert_close(out, torch.tensor([3.0, 6.0]))


def test_adapter_exposes_raw_kernel():
    kernel = TorchAdapter(_scale_kernel, compile=False)
    assert kernel.raw is _scale_kernel
    assert kernel[(4,)] is kernel


def test_backend_from_environment(monkeypatch):
    monkeypatch.setenv("SUBGRIDWD_BACKEND", " Torch ")
    assert _backend._resolve_backend() == "torch"
    monkeypatch.setenv("SUBGRIDWD_BACKEND", "cuda")
    with pytest.raises(ValueError, match="SUBGRIDWD_BACKEND"):
        _backend._resolve_backend()


def test_torch_backend_selected_in_tests():
    assert _backend.KERNEL_BACKEND == "torch"
