# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Log module for subgridwd using computed_tensor_field helpers.

Buffers are indexed by the step counter passed to the log kernels and
flushed to a fixed-width text file by ``write_step``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import cached_property
from pathlib import Path
from typing import ClassVar, List, Literal, Tuple

import numpy as np
import torch
import torch.distributed as dist
from pydantic import Field, PrivateAttr

from subgridwd.modules.abstract_module import (AbstractModule,
                                               computed_tensor_field)


def computed_log_field(
    description: str,
    shape: Tuple[str, ...] = ("log_buffer_size",),
    dtype: Literal["float", "int", "bool"] = "float",
    **kwargs
):
    return computed_tensor_field(
        description=description,
        shape=shape,
        dtype=dtype,
        **kwargs
    )


class LogModule(AbstractModule):
    # ------------------------------------------------------------------ #
    # Metadata
    # ------------------------------------------------------------------ #
    module_name: ClassVar[str] = "log"
    description: ClassVar[str] = "Per-step diagnostics of the subgrid kernels"
    dependencies: ClassVar[list] = ["subgrid"]

    log_buffer_size: int = Field(
        default=1000,
        description="Size of the log buffer",
        ge=1,
    )

    _time_step: float = PrivateAttr(default=0.0)
    _num_steps: int = PrivateAttr(default=0)
    _current_time: datetime = PrivateAttr(default=None)
    _times: List[datetime] = PrivateAttr(default_factory=list)
    _log_initialized: bool = PrivateAttr(default=False)

    # ------------------------------------------------------------------ #
    # Methods
    # ------------------------------------------------------------------ #
    @cached_property
    def log_vars(self) -> List[str]:
        return list(LogModule.model_computed_fields.keys())

    def write_header(self, log_path: Path) -> None:
        headers = [
            "StepStartTime", "EdgeFallback", "EdgeFluxSum",
            "VertexSkipped", "VertexThickSum",
        ]
        widths = [18] + [16] * (len(headers) - 1)
        with log_path.open("w") as f:
            f.write(
                "".join(
                    f"{h:<{w}}" if i == 0 else f"{h:>{w}}"
                    for i, (h, w) in enumerate(zip(headers, widths))
                )
                + "\n"
            )

    def set_time(self, time_step: float, num_steps: int, current_time: datetime) -> None:
        if not isinstance(current_time, datetime):
            raise ValueError(
                f"`current_time` must be a `datetime.datetime` instance. "
                f"Got {type(current_time).__name__} instead. "
                f"This error occurred because the log module is activated "
            )
        self._time_step = time_step
        self._num_steps = num_steps
        self._current_time = current_time
        self._times = [
            self._current_time + timedelta(seconds=time_step * i) for i in range(num_steps)
        ]
        if num_steps > self.log_buffer_size:
            self.log_buffer_size = num_steps + 20
            for field in self.log_vars:
                getattr(self, field).resize_(self.log_buffer_size).zero_()

    def gather_results(self) -> None:
        """
        Sum the buffers over all ranks onto rank 0.
        """
        if not (dist.is_available() and dist.is_initialized()):
            return
        for field in self.log_vars:
            dist.reduce(getattr(self, field), dst=0, op=dist.ReduceOp.SUM)

    def write_step(self, log_path: Path) -> None:
        if self._current_time is None:
            raise RuntimeError("set_time must be called before write_step")
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not self._log_initialized:
            self.write_header(log_path)
            self._log_initialized = True
        with log_path.open("a") as f:
            f.write(
                f"Time Step: {self._time_step:.4f} seconds    Number of Steps: {self._num_steps}\n"
            )
        print(f"Processed step at {self._current_time.strftime('%Y-%m-%d %H:%M:%S')}, num_steps={self._num_steps}")

        num_steps = self._num_steps
        time_strs = np.array(
            [t.strftime("%Y-%m-%d %H:%M") for t in self._times[:num_steps]], dtype=str
        )
        data_arrays = {
            field: getattr(self, field).cpu().numpy()[:num_steps] for field in self.log_vars
        }
        fmt = ["%-18s", "%16d", "%16.6g", "%16d", "%16.6g"]
        with log_path.open("a") as f:
            for i in range(num_steps):
                row = [time_strs[i]] + [data_arrays[field][i] for field in self.log_vars]
                f.write("".join(f_ % v for f_, v in zip(fmt, row)) + "\n")
        self.reset_buffers()

    def reset_buffers(self) -> None:
        for field in self.log_vars:
            getattr(self, field).zero_()

    # ------------------------------------------------------------------ #
    # Computed tensor fields (log buffers)
    # ------------------------------------------------------------------ #
    @computed_log_field(
        description="Number of edges that fell back to the host thickness",
        dtype="int",
    )
    @cached_property
    def edge_fallback_count(self) -> torch.Tensor:
        return torch.zeros((self.log_buffer_size,), dtype=torch.int64, device=self.device)

    @computed_log_field(
        description="Running sum of edge flux layer thickness",
    )
    @cached_property
    def edge_flux_thickness_sum(self) -> torch.Tensor:
        return torch.zeros((self.log_buffer_size,), dtype=self.precision, device=self.device)

    @computed_log_field(
        description="Number of (vertex, level) pairs skipped because the vertex is dry",
        dtype="int",
    )
    @cached_property
    def vertex_skip_count(self) -> torch.Tensor:
        return torch.zeros((self.log_buffer_size,), dtype=torch.int64, device=self.device)

    @computed_log_field(
        description="Running sum of vertex layer thickness",
    )
    @cached_property
    def vertex_thickness_sum(self) -> torch.Tensor:
        return torch.zeros((self.log_buffer_size,), dtype=self.precision, device=self.device)
