# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import List, Literal, Optional, Self

from pydantic import BaseModel, Field, FilePath, field_validator


class SubgridConfig(BaseModel):

    experiment_name: str = Field(default="subgrid_experiment", description="Name of the experiment")
    input_file: FilePath = Field(description="NetCDF file holding the mesh and subgrid tables")
    output_dir: Path = Field(default=Path("./out"), description="Path to the output directory")
    opened_modules: List[str] = Field(default_factory=lambda: ["mesh", "subgrid"], description="List of active modules")
    precision: Literal["float32", "float64"] = Field(default="float32", description="Precision of the data")
    use_subgrid_wetting_drying: bool = Field(default=True, description="Activate the subgrid wetting and drying correction")
    ocean_run_mode: Literal["forward", "init", "analysis"] = Field(default="forward", description="Run mode of the host solver")
    validate_tables: bool = Field(default=True, description="Reject malformed subgrid tables at bind time")
    num_subgrid_table_levels: Optional[int] = Field(default=None, description="Override for the table level count", gt=0)
    log_buffer_size: int = Field(default=1000, description="Size of the per-step log buffers", gt=0)
    block_size: int = Field(default=256, description="GPU block size for kernels", gt=0)

    @classmethod
    def from_toml(cls, toml_path: str | Path) -> Self:
        with open(toml_path, 'rb') as f:
            data = tomllib.load(f)

        return cls(**data)

    @field_validator('opened_modules')
    @classmethod
    def require_mesh(cls, value: List[str]) -> List[str]:
        if "mesh" not in value:
            raise ValueError("opened_modules must include 'mesh'")
        return value

    def model_kwargs(self) -> dict:
        """Keyword arguments for ``SubgridWettingDrying`` (everything but the input proxy)."""
        return dict(
            experiment_name=self.experiment_name,
            output_dir=self.output_dir,
            opened_modules=self.opened_modules,
            precision=self.precision,
            use_subgrid_wetting_drying=self.use_subgrid_wetting_drying,
            ocean_run_mode=self.ocean_run_mode,
            validate_tables=self.validate_tables,
            num_subgrid_table_levels=self.num_subgrid_table_levels,
            log_buffer_size=self.log_buffer_size,
            BLOCK_SIZE=self.block_size,
        )
