# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Mesh module: read-only connectivity and geometry of an unstructured
(MPAS-style) Voronoi mesh, as consumed by the subgrid kernels.
"""

from __future__ import annotations

from functools import cached_property
from typing import ClassVar, Literal, Optional, Self, Tuple

import torch
from pydantic import Field, model_validator

from subgridwd.modules.abstract_module import (AbstractModule, TensorField,
                                               computed_tensor_field)
from subgridwd.utils import find_indices_in_torch

# MPAS marks a missing neighbour (outside the domain) with cell ID 0
MISSING_CELL_ID = 0


def VertexField(
    description: str,
    shape: Tuple[str, ...] = ("num_vertices",),
    dtype: Literal["float", "int", "bool"] = "float",
    **kwargs,
):
    return TensorField(description=description, shape=shape, dtype=dtype, **kwargs)


class MeshModule(AbstractModule):
    """Container for mesh connectivity tensors."""

    module_name: ClassVar[str] = "mesh"
    description: ClassVar[str] = "Mesh connectivity and geometry (cells, edges, vertices)"
    dependencies: ClassVar[list[str]] = []

    # ------------------------------------------------------------------ #
    # Dimensions
    # ------------------------------------------------------------------ #
    num_cells: int = Field(description="Number of cells", ge=1)
    num_edges: int = Field(description="Number of edges", ge=1)
    num_vertices: int = Field(description="Number of vertices", ge=1)
    vertex_degree: int = Field(default=3, description="Number of cells surrounding each vertex", ge=1)
    num_vert_levels: int = Field(default=1, description="Number of vertical layers", ge=1)

    # ------------------------------------------------------------------ #
    # Connectivity (cell IDs, resolved to local indices below)
    # ------------------------------------------------------------------ #
    cell_id: Optional[torch.Tensor] = TensorField(
        description="ID of each cell (indexToCellID); defaults to 1..num_cells",
        shape=("num_cells",),
        dtype="int",
        default=None,
    )

    cells_on_edge: torch.Tensor = TensorField(
        description="IDs of the two cells sharing each edge (cell1 -> cell2 is the positive normal)",
        shape=("num_edges", "two"),
        dtype="int",
    )

    cells_on_vertex: torch.Tensor = VertexField(
        description="IDs of the cells surrounding each vertex",
        shape=("num_vertices", "vertex_degree"),
        dtype="int",
    )

    # ------------------------------------------------------------------ #
    # Geometry
    # ------------------------------------------------------------------ #
    kite_areas_on_vertex: torch.Tensor = VertexField(
        description="Area of the kite shared by each vertex and its surrounding cells (m^2)",
        shape=("num_vertices", "vertex_degree"),
    )

    area_triangle: torch.Tensor = VertexField(
        description="Area of the dual triangle around each vertex (m^2)",
    )

    f_vertex: torch.Tensor = VertexField(
        description="Coriolis parameter at vertices (1/s)",
        default=0.0,
    )

    max_level_vertex_bot: Optional[torch.Tensor] = VertexField(
        description="Number of active vertical levels at each vertex",
        dtype="int",
        default=None,
    )

    @property
    def two(self) -> int:
        return 2

    # ------------------------------------------------------------------ #
    # Computed tensors
    # ------------------------------------------------------------------ #
    @computed_tensor_field(
        description="Local indices of the cells sharing each edge; boundary edges repeat their interior cell",
        shape=("num_edges", "two"),
        dtype="int",
    )
    @cached_property
    def cells_on_edge_idx(self) -> torch.Tensor:
        idx = find_indices_in_torch(self.cells_on_edge, self.resolved_cell_id)
        return torch.where(self.missing_on_edge, idx.flip(1), idx)

    @computed_tensor_field(
        description="Local indices of the cells surrounding each vertex; missing neighbours point at cell 0",
        shape=("num_vertices", "vertex_degree"),
        dtype="int",
    )
    @cached_property
    def cells_on_vertex_idx(self) -> torch.Tensor:
        idx = find_indices_in_torch(self.cells_on_vertex, self.resolved_cell_id)
        return torch.where(self.missing_on_vertex, torch.zeros_like(idx), idx)

    @computed_tensor_field(
        description="Kite areas with the slots of missing neighbours set to zero (m^2)",
        shape=("num_vertices", "vertex_degree"),
    )
    @cached_property
    def kite_weights_on_vertex(self) -> torch.Tensor:
        return torch.where(
            self.missing_on_vertex,
            torch.zeros_like(self.kite_areas_on_vertex),
            self.kite_areas_on_vertex,
        )

    @computed_tensor_field(
        description="Active vertical levels per vertex, defaulting to num_vert_levels",
        shape=("num_vertices",),
        dtype="int",
    )
    @cached_property
    def active_levels_vertex(self) -> torch.Tensor:
        if self.max_level_vertex_bot is None:
            return torch.full((self.num_vertices,), self.num_vert_levels, dtype=torch.int64, device=self.device)
        return self.max_level_vertex_bot

    @cached_property
    def resolved_cell_id(self) -> torch.Tensor:
        if self.cell_id is None:
            return torch.arange(1, self.num_cells + 1, dtype=torch.int64, device=self.device)
        return self.cell_id

    @cached_property
    def missing_on_edge(self) -> torch.Tensor:
        return self.cells_on_edge == MISSING_CELL_ID

    @cached_property
    def missing_on_vertex(self) -> torch.Tensor:
        return self.cells_on_vertex == MISSING_CELL_ID

    # ------------------------------------------------------------------ #
    # Validators
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def validate_connectivity(self) -> Self:
        if torch.any(self.resolved_cell_id == MISSING_CELL_ID):
            raise ValueError(f"cell_id must not use the reserved ID {MISSING_CELL_ID} (missing neighbour)")
        isolated = self.missing_on_edge.all(dim=1)
        if torch.any(isolated):
            raise ValueError(f"cells_on_edge has no cell on {int(isolated.sum().item())} edges")
        if torch.any(self.cells_on_edge_idx < 0):
            num_bad = int((self.cells_on_edge_idx < 0).any(dim=1).sum().item())
            raise ValueError(f"cells_on_edge contains IDs absent from cell_id on {num_bad} edges")
        if torch.any(self.cells_on_vertex_idx < 0):
            num_bad = int((self.cells_on_vertex_idx < 0).any(dim=1).sum().item())
            raise ValueError(f"cells_on_vertex contains IDs absent from cell_id on {num_bad} vertices")

        num_boundary_edges = int(self.missing_on_edge.any(dim=1).sum().item())
        num_boundary_vertices = int(self.missing_on_vertex.any(dim=1).sum().item())
        if num_boundary_edges or num_boundary_vertices:
            self.log(f"Mesh boundary: {num_boundary_edges} edges and {num_boundary_vertices} vertices with missing neighbours")
        return self

    @model_validator(mode="after")
    def validate_area_triangle(self) -> Self:
        if torch.any(self.area_triangle <= 0):
            raise ValueError("area_triangle must be strictly positive")
        return self

    @model_validator(mode="after")
    def validate_max_level_vertex_bot(self) -> Self:
        if self.max_level_vertex_bot is None:
            return self
        invalid = (self.max_level_vertex_bot < 0) | (self.max_level_vertex_bot > self.num_vert_levels)
        if torch.any(invalid):
            raise ValueError(f"max_level_vertex_bot must lie within [0, {self.num_vert_levels}]")
        return self
