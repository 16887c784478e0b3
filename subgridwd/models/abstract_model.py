# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

from __future__ import annotations

from abc import ABC
from functools import cached_property
from pathlib import Path
from typing import (Any, ClassVar, Dict, Iterator, List, Literal, Optional,
                    Self, Tuple, Type)

import numpy as np
import torch
from pydantic import (BaseModel, ConfigDict, Field, PrivateAttr,
                      field_validator, model_validator)

from subgridwd.modules.abstract_module import AbstractModule
from subgridwd.params.input_proxy import InputProxy


class AbstractModel(BaseModel, ABC):
    """
    Master controller binding InputProxy data into the AbstractModule hierarchy.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=False,
        extra='forbid'
    )

    # Class variables
    module_list: ClassVar[Dict[str, Type[AbstractModule]]] = {}

    # Instance fields
    experiment_name: str = Field(default="experiment", description="Name of the experiment")
    input_proxy: InputProxy = Field(default=..., description="InputProxy object containing mesh and table data")
    output_dir: Path = Field(default_factory=lambda: Path("./out"), description="Path to the output directory")
    opened_modules: List[str] = Field(default_factory=list, description="List of active modules")
    precision: Literal["float32", "float64"] = Field(default="float32", description="Precision of the model")
    world_size: int = Field(default=1, description="Total number of distributed processes")
    rank: int = Field(default=0, description="Current process rank in distributed setup")
    device: torch.device = Field(default=torch.device("cpu"), description="Device for tensors (e.g., 'cuda:0', 'cpu')")
    BLOCK_SIZE: int = Field(default=256, description="GPU block size for kernels", gt=0)

    _modules: Dict[str, AbstractModule] = PrivateAttr(default_factory=dict)

    def _iter_all_fields(self, include_computed: bool = True) -> Iterator[Tuple[str, Type[AbstractModule], str, Any]]:
        """
        Iterate over all fields in all opened modules.
        Yields: (module_name, module_class, field_name, field_info)
        """
        for module_name in self.opened_modules:
            if module_name not in self.module_list:
                continue
            module_class = self.module_list[module_name]

            for name, info in module_class.get_model_fields().items():
                if name in module_class.nc_excluded_fields or info.exclude:
                    continue
                yield module_name, module_class, name, info

            if include_computed:
                for name, info in module_class.get_model_computed_fields().items():
                    yield module_name, module_class, name, info

    @cached_property
    def dtype(self) -> torch.dtype:
        return torch.float32 if self.precision == "float32" else torch.float64

    @cached_property
    def output_full_dir(self) -> Path:
        return self.output_dir / self.experiment_name

    @cached_property
    def log_path(self) -> Path:
        return self.output_full_dir / "log.txt"

    def module_overrides(self) -> Dict[str, Any]:
        """
        Model-level settings forwarded to every module, taking precedence
        over values of the same name found in the InputProxy.
        """
        return {}

    def check_namespace_conflicts(self) -> None:
        """
        Check that a field shared by several opened modules is declared identically.
        """
        field_definitions: Dict[str, Tuple[str, Any]] = {}

        for module_name, _, field_name, field_info in self._iter_all_fields(include_computed=True):
            if field_name not in field_definitions:
                field_definitions[field_name] = (module_name, field_info)
                continue
            existing_module, existing_info = field_definitions[field_name]
            new_type = getattr(field_info, 'annotation', getattr(field_info, 'return_type', None))
            old_type = getattr(existing_info, 'annotation', getattr(existing_info, 'return_type', None))
            new_extra = getattr(field_info, 'json_schema_extra', {}) or {}
            old_extra = getattr(existing_info, 'json_schema_extra', {}) or {}
            if new_type != old_type or new_extra != old_extra:
                raise ValueError(
                    f"Namespace conflict detected for field '{field_name}':\n"
                    f"  - Defined in '{existing_module}' with type={old_type}, extra={old_extra}\n"
                    f"  - Defined in '{module_name}' with type={new_type}, extra={new_extra}\n"
                    f"Please rename one of the fields to avoid ambiguity."
                )

    def model_post_init(self, __context):
        """
        Load data, then instantiate the opened modules in dependency order.
        """
        print(f"[rank {self.rank}]: Initializing {type(self).__name__} with opened modules:", self.opened_modules)

        self.check_namespace_conflicts()
        module_data = self.shard_param()
        module_data.update(self.module_overrides())

        from graphlib import TopologicalSorter
        sorter = TopologicalSorter()
        for module_name in self.opened_modules:
            deps = self.module_list[module_name].dependencies
            active_deps = [d for d in deps if d in self.opened_modules]
            sorter.add(module_name, *active_deps)

        for module_name in sorter.static_order():
            module_class = self.module_list[module_name]
            module_instance = module_class(
                opened_modules=self.opened_modules,
                rank=self.rank,
                device=self.device,
                precision=self.dtype,
                **self._modules,
                **module_data
            )
            self._modules[module_name] = module_instance

        self.print_memory_summary()
        print(f"[rank {self.rank}]: All modules initialized successfully.")

    def print_memory_summary(self) -> None:
        total_memory = 0
        print(f"\n[rank {self.rank}] Memory Usage Summary:")
        print(f"{'Module':<30} | {'Memory (MB)':<15}")
        print(f"{'-' * 50}")

        for module_name in self.opened_modules:
            if module_name not in self._modules:
                continue
            mem_bytes = self._modules[module_name].get_memory_usage()
            total_memory += mem_bytes
            print(f"{module_name:<30} | {mem_bytes / (1024 * 1024):<15.2f}")

        print(f"{'-' * 50}")
        print(f"{'Total':<30} | {total_memory / (1024 * 1024):<15.2f} MB\n")

    def get_module(self, module_name: str) -> Optional[AbstractModule]:
        return self._modules[module_name] if module_name in self.opened_modules else None

    def shard_param(self) -> Dict[str, Any]:
        """
        Collect every field the opened modules declare from the InputProxy.

        Tensor fields become contiguous torch tensors (floats cast to the model
        precision); scalar fields are unwrapped to Python values. Absent
        optional fields are left to their module defaults.
        """
        module_data: Dict[str, Any] = {}

        fields_to_load: Dict[str, Any] = {}
        for _, _, field_name, field_info in self._iter_all_fields(include_computed=False):
            fields_to_load.setdefault(field_name, field_info)

        overrides = self.module_overrides()
        missing_required = [
            name for name, info in fields_to_load.items()
            if info.is_required() and name not in self.input_proxy and name not in overrides
        ]
        if missing_required:
            raise RuntimeError(
                f"Required fields missing from InputProxy: {missing_required}. "
                f"Available fields: {list(self.input_proxy.data.keys())}"
            )

        print(f"[rank {self.rank}]: Loading data for modules {self.opened_modules}")

        def to_torch(arr: Any) -> torch.Tensor:
            t = torch.as_tensor(arr)
            if t.is_floating_point() and t.dtype != self.dtype:
                t = t.to(self.dtype)
            if not t.is_contiguous():
                t = t.contiguous()
            return t

        missing_fields = []
        tensor_fields = []
        scalar_fields = []

        for field_name in sorted(fields_to_load):
            field_info = fields_to_load[field_name]
            if field_name not in self.input_proxy:
                missing_fields.append(field_name)
                continue

            value = self.input_proxy[field_name]
            extra = getattr(field_info, 'json_schema_extra', None) or {}
            if 'tensor_shape' in extra:
                module_data[field_name] = to_torch(value)
                tensor_fields.append(field_name)
            else:
                if isinstance(value, torch.Tensor):
                    value = value.item()
                elif isinstance(value, np.ndarray):
                    value = value.item()
                elif isinstance(value, np.generic):
                    value = value.item()
                module_data[field_name] = value
                scalar_fields.append(field_name)

        if tensor_fields:
            print(f"[rank {self.rank}]: Loaded tensor fields: {', '.join(tensor_fields)}")
        if scalar_fields:
            print(f"[rank {self.rank}]: Loaded scalar fields: {', '.join(scalar_fields)}")
        if missing_fields:
            print(f"[rank {self.rank}]: Optional fields not in InputProxy, using default: {', '.join(missing_fields)}")

        return module_data

    def save_state(self, file_path: Optional[Path] = None, fields: Optional[List[str]] = None) -> InputProxy:
        """
        Collect tensor fields of the opened modules into an InputProxy and,
        if ``file_path`` is given, write it to NetCDF.
        """
        data: Dict[str, Any] = {}
        for module_name, _, field_name, field_info in self._iter_all_fields(include_computed=True):
            if fields is not None and field_name not in fields:
                continue
            extra = getattr(field_info, 'json_schema_extra', None) or {}
            if 'tensor_shape' not in extra or field_name in data:
                continue
            value = getattr(self._modules[module_name], field_name, None)
            if isinstance(value, torch.Tensor):
                data[field_name] = value.detach().cpu()

        proxy = InputProxy(data, attrs={"title": f"{self.experiment_name} subgrid state"})
        if file_path is not None:
            Path(file_path).parent.mkdir(parents=True, exist_ok=True)
            proxy.to_nc(file_path)
            print(f"[rank {self.rank}] Saved {len(data)} variables to {file_path}")
        return proxy

    @field_validator("opened_modules")
    @classmethod
    def validate_modules(cls, v: List[str]) -> List[str]:
        """Validate module names are valid"""
        if not v:
            raise ValueError("No modules opened. Please specify at least one module in opened_modules.")
        for module in v:
            if module not in cls.module_list:
                raise ValueError(f"Invalid module name: {module}. Available modules: {list(cls.module_list.keys())}")
        return v

    @model_validator(mode="after")
    def validate_rank(self) -> Self:
        if self.rank < 0 or self.rank >= self.world_size:
            raise ValueError(f"Invalid rank {self.rank} for world size {self.world_size}.")
        return self
