# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Abstract base class for all subgridwd modules using Pydantic v2.
Every table store and mesh container inherits from this class.
"""
from __future__ import annotations

from abc import ABC
from typing import Any, ClassVar, Dict, List, Literal, Optional, Self, Tuple

import torch
from pydantic import (BaseModel, ConfigDict, Field, computed_field,
                      model_validator)
from pydantic.fields import FieldInfo


def TensorField(
    description: str,
    shape: Tuple[str, ...],
    dtype: Literal["float", "int", "bool"] = "float",
    intermediate: bool = False,
    **kwargs
):
    """
    Create a tensor field with shape information for AbstractModule.

    Args:
        description: Human-readable description of the variable
        shape: Tuple of dimension names (scalar attribute names, or
               "module.attribute" for dimensions owned by another module)
        dtype: Data type ('float', 'int', 'bool')
        intermediate: If True, the tensor may be released after
                      initialization to save memory.
        **kwargs: Additional Field parameters
    """
    return Field(
        description=description,
        **kwargs,
        json_schema_extra={
            "tensor_shape": shape,
            "tensor_dtype": dtype,
            "intermediate": intermediate,
        }
    )

def computed_tensor_field(
    description: str,
    shape: Tuple[str, ...],
    dtype: Literal["float", "int", "bool"] = "float",
    intermediate: bool = False,
    **kwargs
):
    """
    Create a computed tensor field with shape information for AbstractModule.
    """
    return computed_field(
        description=description,
        json_schema_extra={
            "tensor_shape": shape,
            "tensor_dtype": dtype,
            "intermediate": intermediate,
        },
        **kwargs
    )


class AbstractModule(BaseModel, ABC):
    """
    Abstract base class for all subgridwd modules.

    Provides:
    - Field discovery and validation using Pydantic v2
    - Shape information for tensor fields
    - Device and precision management
    - Dependency / conflict checks against ``opened_modules``
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,  # Allow torch.Tensor types
        validate_assignment=False,
        extra='ignore'
    )

    # Module metadata - must be overridden in subclasses
    module_name: ClassVar[str] = "abstract"
    description: ClassVar[str] = "Abstract base module"
    dependencies: ClassVar[List[str]] = []
    conflicts: ClassVar[List[str]] = []
    nc_excluded_fields: ClassVar[List[str]] = [
        "opened_modules", "device", "precision", "rank"
    ]

    opened_modules: List[str] = Field(default_factory=list)
    rank: int = Field(default=0, description="Current process rank in distributed setup")
    device: torch.device = Field(default=torch.device("cpu"), description="Device for tensors (e.g., 'cuda:0', 'cpu')")
    precision: torch.dtype = Field(default=torch.float32, description="Data type for float tensors")

    def model_post_init(self, __context: Any):
        if self.module_name not in self.opened_modules:
            raise ValueError(
                f"`{self.module_name}` is not listed in `opened_modules`. "
                f"All active modules must include themselves in that list."
            )
        self.validate_tensors()
        self.init_optional_tensors()
        self.validate_computed_tensors()

    @classmethod
    def get_model_fields(cls) -> Dict[str, FieldInfo]:
        return cls.model_fields

    @classmethod
    def get_model_computed_fields(cls) -> Dict[str, FieldInfo]:
        return cls.model_computed_fields

    @classmethod
    def tensor_field_names(cls) -> List[str]:
        names = []
        for name, field_info in cls.get_model_fields().items():
            extra = getattr(field_info, 'json_schema_extra', None)
            if extra is not None and 'tensor_shape' in extra:
                names.append(name)
        return names

    def log(self, message: str) -> None:
        print(f"[rank {self.rank}][{type(self).__name__}] {message}")

    def _dtype_for(self, tensor_dtype: str) -> torch.dtype:
        dtype_map = {
            'float': self.precision,
            'int': torch.int64,
            'bool': torch.bool
        }
        return dtype_map.get(tensor_dtype, self.precision)

    def init_optional_tensors(self) -> None:
        """
        Initialize optional tensor fields that were not supplied:
        - If None -> stays None
        - If scalar default -> full with that value and expected shape
        """
        for name in self.tensor_field_names():
            if name in self.model_fields_set:
                continue
            field_info = self.get_model_fields()[name]
            value = getattr(self, name, None)
            if value is None or isinstance(value, torch.Tensor):
                continue
            if not isinstance(value, (int, float, bool)):
                raise TypeError(f"Unsupported default type for {name}: {type(value)}")
            target_dtype = self._dtype_for(field_info.json_schema_extra.get('tensor_dtype', 'float'))
            setattr(
                self,
                name,
                torch.full(self.get_expected_shape(name), fill_value=value, dtype=target_dtype, device=self.device),
            )

    def get_expected_shape(self, field_name: str) -> Optional[Tuple[int, ...]]:
        """
        Get the expected shape for a tensor field based on current scalar values.

        Args:
            field_name: Name of the tensor field

        Returns:
            Tuple of integer dimensions
        """
        model_fields = self.get_model_fields() | self.get_model_computed_fields()
        if field_name not in model_fields:
            raise ValueError(f"Field {field_name} is not a tensor field")
        json_schema_extra = getattr(model_fields[field_name], 'json_schema_extra', None) or {}
        shape_spec = json_schema_extra.get('tensor_shape', None)
        if shape_spec is None:
            return None

        dims = []
        for dim_name in shape_spec:
            # Handle dotted notation (e.g., "mesh.num_cells")
            if "." in dim_name:
                parts = dim_name.split(".")
                if len(parts) != 2:
                    raise ValueError(f"Invalid dimension format: {dim_name}. Expected 'module.attribute'")
                module_name, attr_name = parts
                module_obj = getattr(self, module_name, None)
                if module_obj is None:
                    raise ValueError(f"Module {module_name} not found in {self.module_name} for dimension {dim_name}")
                if not hasattr(module_obj, attr_name):
                    raise ValueError(f"Attribute {attr_name} not found in module {module_name} for dimension {dim_name}")
                dims.append(getattr(module_obj, attr_name))
                continue

            if not hasattr(self, dim_name):
                raise ValueError(f"Dimension {dim_name} not found in module")
            dims.append(getattr(self, dim_name))

        return tuple(dims)

    def get_expected_dtype(self, field_name: str) -> torch.dtype:
        model_fields = self.get_model_fields() | self.get_model_computed_fields()
        if field_name not in model_fields:
            raise ValueError(f"Field {field_name} is not a tensor field")
        json_schema_extra = getattr(model_fields[field_name], 'json_schema_extra', None) or {}
        return self._dtype_for(json_schema_extra.get('tensor_dtype', 'float'))

    def validate_tensors(self) -> bool:
        """
        Validate and auto-fix tensor consistency issues.
        - Validates shapes (fails on mismatch)
        - Ensures contiguity
        - Moves tensors to self.device
        - Casts to the expected dtype (precision for floats, int64 for ints)
        """
        for field_name in self.tensor_field_names():
            tensor = getattr(self, field_name, None)
            if tensor is None or not isinstance(tensor, torch.Tensor):
                continue

            # 1. Shape validation (fail fast)
            expected_shape = self.get_expected_shape(field_name)
            if tuple(tensor.shape) != expected_shape:
                raise ValueError(f"Shape mismatch for {field_name}: expected {expected_shape}, got {tuple(tensor.shape)}")

            # 2. Auto-fix contiguity
            if not tensor.is_contiguous():
                tensor = tensor.contiguous()

            # 3. Auto-fix device mismatch
            if tensor.device != self.device:
                tensor = tensor.to(self.device)

            # 4. Auto-fix dtype
            expected_dtype = self.get_expected_dtype(field_name)
            if tensor.dtype != expected_dtype:
                if tensor.is_floating_point() and expected_dtype in (torch.float32, torch.float64):
                    self.log(f"Auto-fixed dtype for {field_name}: {tensor.dtype} -> {expected_dtype}")
                tensor = tensor.to(expected_dtype)
            setattr(self, field_name, tensor)
        return True

    def validate_computed_tensors(self) -> bool:
        """
        Validate computed tensors to ensure they are correctly defined.
        """
        for field_name in self.get_model_computed_fields():
            tensor = getattr(self, field_name)
            if not isinstance(tensor, torch.Tensor):
                continue
            if tensor.device != self.device:
                raise ValueError(
                    f"Computed field {field_name} must be on device {self.device}, "
                    f"but is on {tensor.device}"
                )
            if not tensor.is_contiguous():
                raise ValueError(f"Computed field {field_name} must be contiguous, but is not")
            if tuple(tensor.shape) != self.get_expected_shape(field_name):
                raise ValueError(
                    f"Computed field {field_name} has shape {tuple(tensor.shape)}, "
                    f"but expected shape is {self.get_expected_shape(field_name)}"
                )
        return True

    @model_validator(mode="after")
    def validate_opened_modules(self) -> Self:
        v = self.opened_modules
        if self.module_name not in v:
            raise ValueError(
                f"Current module '{self.module_name}' must be included in opened_modules. "
                f"Available modules: {v}"
            )

        missing_deps = [dep for dep in self.dependencies if dep not in v]
        if missing_deps:
            raise ValueError(
                f"Module '{self.module_name}' has missing dependencies in opened_modules: {missing_deps}. "
                f"Required dependencies: {self.dependencies}. "
                f"Available modules: {v}"
            )

        present_conflicts = [c for c in self.conflicts if c in v and c != self.module_name]
        if present_conflicts:
            raise ValueError(
                f"Module '{self.module_name}' conflicts with modules present in opened_modules: {present_conflicts}. "
                f"These modules cannot be enabled together."
            )

        return self

    def get_memory_usage(self) -> int:
        """
        Calculate the memory usage of the module in bytes.
        Excludes intermediate tensors.
        """
        total_bytes = 0
        all_fields = self.get_model_fields() | self.get_model_computed_fields()

        for name, field_info in all_fields.items():
            json_schema_extra = getattr(field_info, 'json_schema_extra', None)
            if json_schema_extra and json_schema_extra.get('intermediate'):
                continue
            value = getattr(self, name, None)
            if isinstance(value, torch.Tensor):
                total_bytes += value.element_size() * value.nelement()

        return total_bytes
