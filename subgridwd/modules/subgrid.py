# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Subgrid table store for wetting and drying.

Holds, for every cell, edge and vertex, a wet-volume table and a
wet-fraction table sampled at ``num_subgrid_table_levels`` uniformly spaced
surface heights between the element's (min, max) ssh range, plus the
bathymetry statistics used when the lookup leaves the tabulated range.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import ClassVar, Dict, Literal, Optional, Self, Tuple

import torch
from pydantic import Field, model_validator

from subgridwd.modules.abstract_module import (AbstractModule, TensorField,
                                               computed_tensor_field)
from subgridwd.modules.mesh import MeshModule

LOCATIONS = ("cell", "edge", "vertex")


def SubgridTableField(
    description: str,
    location: Literal["cell", "edge", "vertex"],
    kind: Literal["table", "range", "scalar"] = "table",
    **kwargs,
):
    num_elements = f"mesh.num_{location}s" if location != "vertex" else "mesh.num_vertices"
    if kind == "table":
        shape: Tuple[str, ...] = (num_elements, "num_subgrid_table_levels")
    elif kind == "range":
        shape = (num_elements, "two")
    else:
        shape = (num_elements,)
    return TensorField(description=description, shape=shape, dtype="float", **kwargs)


@dataclass(frozen=True)
class SubgridTableSet:
    """Tables of one element kind, as passed to the lookup kernels."""
    location: str
    num_elements: int
    wet_volume_table: torch.Tensor
    wet_fraction_table: torch.Tensor
    table_range: torch.Tensor
    bathymetry_mean: torch.Tensor
    bathymetry_min: Optional[torch.Tensor]


class SubgridModule(AbstractModule):
    """Container for subgrid lookup tables."""

    module_name: ClassVar[str] = "subgrid"
    description: ClassVar[str] = "Subgrid wetting and drying lookup tables"
    dependencies: ClassVar[list[str]] = ["mesh"]

    mesh: Optional[MeshModule] = Field(default=None, exclude=True, description="Reference to MeshModule")

    num_subgrid_table_levels: int = Field(
        description="Number of uniformly spaced ssh samples per table", ge=2,
    )
    ocean_run_mode: Literal["forward", "init", "analysis"] = Field(
        default="forward", description="Run mode of the host solver",
    )
    validate_tables: bool = Field(
        default=True,
        description="Reject malformed tables at bind time (disable only for bit-compatible legacy runs)",
    )

    # ------------------------------------------------------------------ #
    # Cell tables
    # ------------------------------------------------------------------ #
    subgrid_wet_volume_cell_table: torch.Tensor = SubgridTableField(
        description="Wet volume per unit area at each table level (m)", location="cell",
    )
    subgrid_wet_fraction_cell_table: torch.Tensor = SubgridTableField(
        description="Wet fraction at each table level (-)", location="cell",
    )
    subgrid_ssh_cell_table_range: torch.Tensor = SubgridTableField(
        description="(min, max) ssh covered by the cell table (m)", location="cell", kind="range",
    )
    subgrid_cell_bathymetry_mean: torch.Tensor = SubgridTableField(
        description="Mean bathymetry depth of the cell, i.e. bottom depth (m)", location="cell", kind="scalar",
    )
    subgrid_cell_bathymetry_min: torch.Tensor = SubgridTableField(
        description="Minimum bathymetry depth of the cell (m)", location="cell", kind="scalar",
    )

    # ------------------------------------------------------------------ #
    # Edge tables
    # ------------------------------------------------------------------ #
    subgrid_wet_volume_edge_table: torch.Tensor = SubgridTableField(
        description="Wet volume per unit area at each table level (m)", location="edge",
    )
    subgrid_wet_fraction_edge_table: torch.Tensor = SubgridTableField(
        description="Wet fraction at each table level (-)", location="edge",
    )
    subgrid_ssh_edge_table_range: torch.Tensor = SubgridTableField(
        description="(min, max) ssh covered by the edge table (m)", location="edge", kind="range",
    )
    subgrid_edge_bathymetry_mean: torch.Tensor = SubgridTableField(
        description="Mean bathymetry depth of the edge (m)", location="edge", kind="scalar",
    )
    subgrid_edge_bathymetry_min: Optional[torch.Tensor] = SubgridTableField(
        description="Minimum bathymetry depth of the edge (m)", location="edge", kind="scalar", default=None,
    )

    # ------------------------------------------------------------------ #
    # Vertex tables
    # ------------------------------------------------------------------ #
    subgrid_wet_volume_vertex_table: torch.Tensor = SubgridTableField(
        description="Wet volume per unit area at each table level (m)", location="vertex",
    )
    subgrid_wet_fraction_vertex_table: torch.Tensor = SubgridTableField(
        description="Wet fraction at each table level (-)", location="vertex",
    )
    subgrid_ssh_vertex_table_range: torch.Tensor = SubgridTableField(
        description="(min, max) ssh covered by the vertex table (m)", location="vertex", kind="range",
    )
    subgrid_vertex_bathymetry_mean: torch.Tensor = SubgridTableField(
        description="Mean bathymetry depth of the vertex (m)", location="vertex", kind="scalar",
    )
    subgrid_vertex_bathymetry_min: torch.Tensor = SubgridTableField(
        description="Minimum bathymetry depth of the vertex (m)", location="vertex", kind="scalar",
    )

    @property
    def two(self) -> int:
        return 2

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #
    @computed_tensor_field(
        description="Forward-looked-up cell layer thickness after initialization (m)",
        shape=("mesh.num_cells",),
    )
    @cached_property
    def subgrid_layer_thickness_debug(self) -> torch.Tensor:
        return torch.zeros(self.mesh.num_cells, dtype=self.precision, device=self.device)

    # ------------------------------------------------------------------ #
    # Access helpers
    # ------------------------------------------------------------------ #
    @property
    def table_sets(self) -> Dict[str, SubgridTableSet]:
        return {
            "cell": SubgridTableSet(
                location="cell",
                num_elements=self.mesh.num_cells,
                wet_volume_table=self.subgrid_wet_volume_cell_table,
                wet_fraction_table=self.subgrid_wet_fraction_cell_table,
                table_range=self.subgrid_ssh_cell_table_range,
                bathymetry_mean=self.subgrid_cell_bathymetry_mean,
                bathymetry_min=self.subgrid_cell_bathymetry_min,
            ),
            "edge": SubgridTableSet(
                location="edge",
                num_elements=self.mesh.num_edges,
                wet_volume_table=self.subgrid_wet_volume_edge_table,
                wet_fraction_table=self.subgrid_wet_fraction_edge_table,
                table_range=self.subgrid_ssh_edge_table_range,
                bathymetry_mean=self.subgrid_edge_bathymetry_mean,
                bathymetry_min=self.subgrid_edge_bathymetry_min,
            ),
            "vertex": SubgridTableSet(
                location="vertex",
                num_elements=self.mesh.num_vertices,
                wet_volume_table=self.subgrid_wet_volume_vertex_table,
                wet_fraction_table=self.subgrid_wet_fraction_vertex_table,
                table_range=self.subgrid_ssh_vertex_table_range,
                bathymetry_mean=self.subgrid_vertex_bathymetry_mean,
                bathymetry_min=self.subgrid_vertex_bathymetry_min,
            ),
        }

    def tables_for(self, location: str) -> SubgridTableSet:
        if location not in LOCATIONS:
            raise ValueError(f"Unknown table location '{location}'. Expected one of {LOCATIONS}")
        return self.table_sets[location]

    # ------------------------------------------------------------------ #
    # Validators
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def validate_single_layer(self) -> Self:
        if self.ocean_run_mode == "forward" and self.mesh.num_vert_levels != 1:
            self.log(
                f"CRITICAL: use_subgrid_wetting_drying = True requires a single layer, "
                f"got num_vert_levels={self.mesh.num_vert_levels}"
            )
            raise ValueError(
                "use_subgrid_wetting_drying = True requires single layer "
                f"(num_vert_levels={self.mesh.num_vert_levels} in forward mode)"
            )
        return self

    @model_validator(mode="after")
    def validate_table_ranges(self) -> Self:
        if not self.validate_tables:
            return self
        for location in LOCATIONS:
            table_range = self.tables_for(location).table_range
            invalid = ~(table_range[:, 1] > table_range[:, 0])
            num_invalid = int(invalid.sum().item())
            if num_invalid > 0:
                first = int(torch.nonzero(invalid)[0].item())
                raise ValueError(
                    f"subgrid_ssh_{location}_table_range must satisfy max > min; "
                    f"found {num_invalid} invalid {location}s (first at index {first})"
                )
        return self

    @model_validator(mode="after")
    def validate_table_monotonicity(self) -> Self:
        if not self.validate_tables:
            self.log(
                "Warning: table validation disabled. Non-monotonic tables will produce "
                "silently incorrect interpolation."
            )
            return self
        for location in LOCATIONS:
            tables = self.tables_for(location)
            for kind, table in (("wet_volume", tables.wet_volume_table),
                                ("wet_fraction", tables.wet_fraction_table)):
                decreasing = (table[:, 1:] < table[:, :-1]).any(dim=1)
                num_invalid = int(decreasing.sum().item())
                if num_invalid > 0:
                    first = int(torch.nonzero(decreasing)[0].item())
                    raise ValueError(
                        f"subgrid_{kind}_{location}_table must be non-decreasing along the table levels; "
                        f"found {num_invalid} invalid {location}s (first at index {first})"
                    )
        return self

    @model_validator(mode="after")
    def validate_wet_fraction_bounds(self) -> Self:
        for location in LOCATIONS:
            table = self.tables_for(location).wet_fraction_table
            num_outside = int(((table < 0) | (table > 1)).sum().item())
            if num_outside > 0:
                self.log(
                    f"Warning: Found {num_outside} {location} wet fraction entries outside [0, 1]."
                )
        return self
