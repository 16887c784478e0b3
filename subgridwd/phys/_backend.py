# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Kernel backend selection and adapter for subgridwd.

Set environment variable SUBGRIDWD_BACKEND to choose between 'triton'
(default when CUDA is available) and 'torch'.

    export SUBGRIDWD_BACKEND=torch

When 'torch' is selected, a thin adapter wraps each PyTorch kernel so it
can be called with the Triton calling convention used in the model:

    kernel[grid](table_ptr=tensor, scalar_arg=value, BLOCK_SIZE=bs)

The adapter:
  1. Ignores the ``[grid]`` subscript (grid is not needed for PyTorch).
  2. Strips the ``_ptr`` suffix from tensor argument names.
  3. Drops unknown kwargs (``BLOCK_SIZE``, etc.).
  4. Passes scalars directly (no buffer conversion needed).

Torch kernels are wrapped with ``torch.compile`` only when
SUBGRIDWD_TORCH_COMPILE=1.
"""

import inspect
import os
import warnings
from typing import Any, Callable


def _resolve_backend() -> str:
    """Resolve kernel backend, falling back to 'torch' when CUDA is unavailable."""
    explicit = os.environ.get("SUBGRIDWD_BACKEND", "").strip().lower()
    if explicit:
        if explicit not in ("triton", "torch"):
            raise ValueError(f"SUBGRIDWD_BACKEND must be 'triton' or 'torch', got '{explicit}'")
        return explicit
    try:
        import torch
        if torch.cuda.is_available():
            return "triton"
    except ImportError:
        pass
    warnings.warn(
        "CUDA is not available – automatically selecting the 'torch' backend. "
        "Set SUBGRIDWD_BACKEND=triton to override.",
        stacklevel=2,
    )
    return "torch"


KERNEL_BACKEND: str = _resolve_backend()
TORCH_COMPILE: bool = os.environ.get("SUBGRIDWD_TORCH_COMPILE", "0").strip() == "1"


def _torch_compile(fn: Callable) -> Callable:
    """Apply torch.compile with inference-optimized settings."""
    import torch
    if torch.cuda.is_available():
        return torch.compile(fn, mode="reduce-overhead", fullgraph=True)
    return torch.compile(fn, fullgraph=True)


class TorchAdapter:
    """Wrap a pure-PyTorch kernel so it can be called with Triton syntax."""

    __slots__ = (
        "_kernel",
        "_kernel_raw",
        "_param_names",
        "_key_map",
    )

    def __init__(self, kernel_func: Callable, *, compile: bool = True):
        self._kernel_raw = kernel_func
        self._param_names: set[str] = set(inspect.signature(kernel_func).parameters.keys())
        self._key_map: dict[str, str] = {}  # caller key -> kernel param name
        if compile and TORCH_COMPILE:
            self._kernel = _torch_compile(kernel_func)
        else:
            self._kernel = kernel_func

    def _resolve_key(self, key: str) -> str:
        """Map a caller kwarg name to the kernel parameter name.

        Returns the mapped name, or an empty string if the key should be
        dropped (e.g. ``BLOCK_SIZE``).
        """
        try:
            return self._key_map[key]
        except KeyError:
            pass
        base_key = key[:-4] if key.endswith("_ptr") else key
        if base_key in self._param_names:
            mapped = base_key
        elif key in self._param_names:
            mapped = key
        else:
            mapped = ""  # sentinel: drop this kwarg
        self._key_map[key] = mapped
        return mapped

    def __call__(self, **kwargs: Any):
        call_kwargs = {}
        for key, value in kwargs.items():
            mapped = self._resolve_key(key)
            if mapped:
                call_kwargs[mapped] = value
        return self._kernel(**call_kwargs)

    def __getitem__(self, grid):
        """Accept ``kernel[grid]`` syntax; grid is unused."""
        return self

    @property
    def raw(self) -> Callable:
        return self._kernel_raw


def adapt_torch_kernel(kernel_func: Callable, *, compile: bool = True) -> TorchAdapter:
    """Create a Triton-compatible adapter for a pure-PyTorch kernel.

    Args:
        compile: If False the kernel is never compiled (useful for log /
                 diagnostic kernels that contain ``.item()`` calls which
                 break the graph).
    """
    return TorchAdapter(kernel_func, compile=compile)
