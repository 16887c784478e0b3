# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Master controller for the subgrid wetting and drying engine.

The host solver owns every state array (ssh, layer thickness, velocities,
vorticity); the controller only reads them and writes into the output
arrays it is handed. Level 0 is the only vertical level touched by the
edge flux kernels since the correction is restricted to a single layer.
"""
from datetime import datetime
from functools import cached_property
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type

import torch
from pydantic import Field, computed_field

from subgridwd.models.abstract_model import AbstractModel
from subgridwd.modules.abstract_module import AbstractModule
from subgridwd.modules.log import LogModule
from subgridwd.modules.mesh import MeshModule
from subgridwd.modules.subgrid import SubgridModule, SubgridTableSet
from subgridwd.phys.flux import (
    compute_layer_thick_edge_flux_center_kernel,
    compute_layer_thick_edge_flux_center_log_kernel,
    compute_layer_thick_edge_flux_upwind_kernel,
    compute_layer_thick_edge_flux_upwind_log_kernel)
from subgridwd.phys.lookup import (compute_layer_thickness_lookup_kernel,
                                   compute_ssh_lookup_kernel,
                                   compute_wet_fraction_lookup_kernel)
from subgridwd.phys.vorticity import (compute_vorticity_kernel,
                                      compute_vorticity_log_kernel)

SUBGRID_MODULES = ("subgrid", "log")


class SubgridWettingDrying(AbstractModel):
    """
    Subgrid wetting/drying lookup engine master controller class
    """
    module_list: ClassVar[Dict[str, Type[AbstractModule]]] = {
        "mesh": MeshModule,
        "subgrid": SubgridModule,
        "log": LogModule,
    }

    opened_modules: List[str] = Field(default_factory=lambda: ["mesh", "subgrid"], description="List of active modules")
    use_subgrid_wetting_drying: bool = Field(default=True, description="Activate the subgrid wetting and drying correction")
    ocean_run_mode: Literal["forward", "init", "analysis"] = Field(default="forward", description="Run mode of the host solver")
    validate_tables: bool = Field(default=True, description="Reject malformed subgrid tables at bind time")
    num_subgrid_table_levels: Optional[int] = Field(
        default=None, description="Override for the number of table levels found in the input", gt=0,
    )
    log_buffer_size: int = Field(default=1000, description="Size of the per-step log buffers", ge=1)

    def model_post_init(self, __context):
        if not self.use_subgrid_wetting_drying:
            disabled = [m for m in self.opened_modules if m in SUBGRID_MODULES]
            if disabled:
                print(f"[rank {self.rank}]: use_subgrid_wetting_drying = False, skipping modules {disabled}")
            self.opened_modules = [m for m in self.opened_modules if m not in SUBGRID_MODULES]
        super().model_post_init(__context)

    def module_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {
            "ocean_run_mode": self.ocean_run_mode,
            "validate_tables": self.validate_tables,
            "log_buffer_size": self.log_buffer_size,
        }
        if self.num_subgrid_table_levels is not None:
            overrides["num_subgrid_table_levels"] = self.num_subgrid_table_levels
        return overrides

    @cached_property
    def mesh(self) -> MeshModule:
        return self.get_module("mesh")

    @cached_property
    def subgrid(self) -> Optional[SubgridModule]:
        return self.get_module("subgrid")

    @cached_property
    def log(self) -> Optional[LogModule]:
        return self.get_module("log")

    @computed_field
    @cached_property
    def subgrid_flag(self) -> bool:
        return self.subgrid is not None

    @computed_field
    @cached_property
    def log_flag(self) -> bool:
        return self.log is not None

    def grid(self, num_elements: int) -> Tuple[int]:
        return ((num_elements + self.BLOCK_SIZE - 1) // self.BLOCK_SIZE,)

    # ------------------------------------------------------------------ #
    # Argument handling
    # ------------------------------------------------------------------ #
    def _require_subgrid(self) -> SubgridModule:
        if self.subgrid is None:
            raise RuntimeError(
                "Subgrid wetting and drying is not active. Set use_subgrid_wetting_drying = True "
                "and open the 'subgrid' module."
            )
        return self.subgrid

    def _as_input(self, name: str, value: torch.Tensor, shape: Tuple[int, ...]) -> torch.Tensor:
        value = torch.as_tensor(value, device=self.device)
        if tuple(value.shape) != shape:
            raise ValueError(f"Shape mismatch for {name}: expected {shape}, got {tuple(value.shape)}")
        if value.dtype != self.dtype:
            value = value.to(self.dtype)
        return value.contiguous()

    def _check_output(self, name: str, value: torch.Tensor, shape: Tuple[int, ...]) -> torch.Tensor:
        if not isinstance(value, torch.Tensor):
            raise TypeError(f"{name} must be a torch.Tensor, got {type(value).__name__}")
        if tuple(value.shape) != shape:
            raise ValueError(f"Shape mismatch for {name}: expected {shape}, got {tuple(value.shape)}")
        if value.dtype != self.dtype or value.device != self.device:
            raise ValueError(
                f"{name} must be a {self.dtype} tensor on {self.device}, "
                f"got {value.dtype} on {value.device}"
            )
        if not value.is_contiguous():
            raise ValueError(f"{name} must be contiguous")
        return value

    def _logging(self, current_step: Optional[int]) -> bool:
        if current_step is None or self.log is None:
            return False
        if not 0 <= current_step < self.log.log_buffer_size:
            raise ValueError(
                f"current_step={current_step} is outside the log buffer (size {self.log.log_buffer_size})"
            )
        return True

    # ------------------------------------------------------------------ #
    # Table lookups
    # ------------------------------------------------------------------ #
    def layer_thickness_lookup(
        self,
        zeta: torch.Tensor,
        location: Literal["cell", "edge", "vertex"] = "cell",
        out: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Forward lookup: surface height -> wet volume per unit area.

        Above the tabulated range the result is ``zeta + bathymetry_mean``;
        at or below it the element is dry (0).
        """
        tables = self._require_subgrid().tables_for(location)
        zeta = self._as_input("zeta", zeta, (tables.num_elements,))
        out = self._output_or_new("layer_thickness", out, tables)
        compute_layer_thickness_lookup_kernel[self.grid(tables.num_elements)](
            zeta_ptr=zeta,
            table_ptr=tables.wet_volume_table,
            table_range_ptr=tables.table_range,
            bathymetry_mean_ptr=tables.bathymetry_mean,
            layer_thickness_ptr=out,
            num_elements=tables.num_elements,
            num_subgrid_table_levels=self.subgrid.num_subgrid_table_levels,
            BLOCK_SIZE=self.BLOCK_SIZE,
        )
        return out

    def wet_fraction_lookup(
        self,
        zeta: torch.Tensor,
        location: Literal["cell", "edge", "vertex"] = "cell",
        out: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """Surface height -> wet fraction (1 above the range, 0 at or below it)."""
        tables = self._require_subgrid().tables_for(location)
        zeta = self._as_input("zeta", zeta, (tables.num_elements,))
        out = self._output_or_new("wet_fraction", out, tables)
        compute_wet_fraction_lookup_kernel[self.grid(tables.num_elements)](
            zeta_ptr=zeta,
            table_ptr=tables.wet_fraction_table,
            table_range_ptr=tables.table_range,
            wet_fraction_ptr=out,
            num_elements=tables.num_elements,
            num_subgrid_table_levels=self.subgrid.num_subgrid_table_levels,
            BLOCK_SIZE=self.BLOCK_SIZE,
        )
        return out

    def ssh_lookup(
        self,
        layer_thickness: torch.Tensor,
        location: Literal["cell", "edge", "vertex"] = "cell",
        out: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Inverse lookup: wet volume per unit area -> surface height.

        At or above the last table value the result is
        ``layer_thickness - bathymetry_mean``; at or below the first it is
        ``-bathymetry_min``, which is not clipped against the bottom.
        """
        tables = self._require_subgrid().tables_for(location)
        if tables.bathymetry_min is None:
            raise ValueError(f"subgrid_{location}_bathymetry_min is required for the inverse lookup")
        layer_thickness = self._as_input("layer_thickness", layer_thickness, (tables.num_elements,))
        out = self._output_or_new("ssh", out, tables)
        compute_ssh_lookup_kernel[self.grid(tables.num_elements)](
            layer_thickness_ptr=layer_thickness,
            table_ptr=tables.wet_volume_table,
            table_range_ptr=tables.table_range,
            bathymetry_mean_ptr=tables.bathymetry_mean,
            bathymetry_min_ptr=tables.bathymetry_min,
            ssh_ptr=out,
            num_elements=tables.num_elements,
            num_subgrid_table_levels=self.subgrid.num_subgrid_table_levels,
            BLOCK_SIZE=self.BLOCK_SIZE,
        )
        return out

    def _output_or_new(self, name: str, out: Optional[torch.Tensor], tables: SubgridTableSet) -> torch.Tensor:
        if out is None:
            return torch.empty(tables.num_elements, dtype=self.dtype, device=self.device)
        return self._check_output(name, out, (tables.num_elements,))

    # ------------------------------------------------------------------ #
    # Edge flux thickness
    # ------------------------------------------------------------------ #
    def compute_layer_thick_edge_flux_center(
        self,
        ssh: torch.Tensor,
        layer_thick_edge_mean: torch.Tensor,
        layer_thick_edge_flux: torch.Tensor,
        current_step: Optional[int] = None,
    ) -> torch.Tensor:
        """
        Edge thickness from the mean ssh of the two adjacent cells.

        Edges whose looked-up thickness is below the dry tolerance take
        ``layer_thick_edge_mean`` instead. Only level 0 is written.
        """
        subgrid = self._require_subgrid()
        mesh = self.mesh
        edge_shape = (mesh.num_edges, mesh.num_vert_levels)
        ssh = self._as_input("ssh", ssh, (mesh.num_cells,))
        layer_thick_edge_mean = self._as_input("layer_thick_edge_mean", layer_thick_edge_mean, edge_shape)
        self._check_output("layer_thick_edge_flux", layer_thick_edge_flux, edge_shape)

        kwargs = dict(
            ssh_ptr=ssh,
            cells_on_edge_idx_ptr=mesh.cells_on_edge_idx,
            subgrid_wet_volume_edge_table_ptr=subgrid.subgrid_wet_volume_edge_table,
            subgrid_ssh_edge_table_range_ptr=subgrid.subgrid_ssh_edge_table_range,
            subgrid_edge_bathymetry_mean_ptr=subgrid.subgrid_edge_bathymetry_mean,
            layer_thick_edge_mean_ptr=layer_thick_edge_mean,
            layer_thick_edge_flux_ptr=layer_thick_edge_flux,
            num_edges=mesh.num_edges,
            num_vert_levels=mesh.num_vert_levels,
            num_subgrid_table_levels=subgrid.num_subgrid_table_levels,
            BLOCK_SIZE=self.BLOCK_SIZE,
        )
        if self._logging(current_step):
            compute_layer_thick_edge_flux_center_log_kernel[self.grid(mesh.num_edges)](
                edge_fallback_count_ptr=self.log.edge_fallback_count,
                edge_flux_thickness_sum_ptr=self.log.edge_flux_thickness_sum,
                current_step=current_step,
                **kwargs,
            )
        else:
            compute_layer_thick_edge_flux_center_kernel[self.grid(mesh.num_edges)](**kwargs)
        return layer_thick_edge_flux

    def compute_layer_thick_edge_flux_upwind(
        self,
        ssh: torch.Tensor,
        normal_velocity: torch.Tensor,
        layer_thickness: torch.Tensor,
        layer_thick_edge_flux: torch.Tensor,
        current_step: Optional[int] = None,
    ) -> torch.Tensor:
        """
        Edge thickness from the upwind cell's ssh.

        Positive normal velocity selects cell 1, negative selects cell 2,
        zero uses the mean of both. Dry edges fall back to the mean layer
        thickness of the two cells. Boundary edges read their interior cell
        in both slots. Only level 0 is written.
        """
        subgrid = self._require_subgrid()
        mesh = self.mesh
        edge_shape = (mesh.num_edges, mesh.num_vert_levels)
        ssh = self._as_input("ssh", ssh, (mesh.num_cells,))
        normal_velocity = self._as_input("normal_velocity", normal_velocity, edge_shape)
        layer_thickness = self._as_input("layer_thickness", layer_thickness, (mesh.num_cells, mesh.num_vert_levels))
        self._check_output("layer_thick_edge_flux", layer_thick_edge_flux, edge_shape)

        kwargs = dict(
            ssh_ptr=ssh,
            normal_velocity_ptr=normal_velocity,
            layer_thickness_ptr=layer_thickness,
            cells_on_edge_idx_ptr=mesh.cells_on_edge_idx,
            subgrid_wet_volume_edge_table_ptr=subgrid.subgrid_wet_volume_edge_table,
            subgrid_ssh_edge_table_range_ptr=subgrid.subgrid_ssh_edge_table_range,
            subgrid_edge_bathymetry_mean_ptr=subgrid.subgrid_edge_bathymetry_mean,
            layer_thick_edge_flux_ptr=layer_thick_edge_flux,
            num_edges=mesh.num_edges,
            num_cells=mesh.num_cells,
            num_vert_levels=mesh.num_vert_levels,
            num_subgrid_table_levels=subgrid.num_subgrid_table_levels,
            BLOCK_SIZE=self.BLOCK_SIZE,
        )
        if self._logging(current_step):
            compute_layer_thick_edge_flux_upwind_log_kernel[self.grid(mesh.num_edges)](
                edge_fallback_count_ptr=self.log.edge_fallback_count,
                edge_flux_thickness_sum_ptr=self.log.edge_flux_thickness_sum,
                current_step=current_step,
                **kwargs,
            )
        else:
            compute_layer_thick_edge_flux_upwind_kernel[self.grid(mesh.num_edges)](**kwargs)
        return layer_thick_edge_flux

    # ------------------------------------------------------------------ #
    # Vorticity
    # ------------------------------------------------------------------ #
    def compute_vorticity(
        self,
        ssh: torch.Tensor,
        relative_vorticity: torch.Tensor,
        normalized_relative_vorticity_vertex: torch.Tensor,
        normalized_planetary_vorticity_vertex: torch.Tensor,
        current_step: Optional[int] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Normalize relative and planetary vorticity by the subgrid vertex thickness.

        Vertex (level) entries whose thickness is exactly zero are left as
        they were on entry.
        """
        subgrid = self._require_subgrid()
        mesh = self.mesh
        vertex_shape = (mesh.num_vertices, mesh.num_vert_levels)
        ssh = self._as_input("ssh", ssh, (mesh.num_cells,))
        relative_vorticity = self._as_input("relative_vorticity", relative_vorticity, vertex_shape)
        self._check_output("normalized_relative_vorticity_vertex", normalized_relative_vorticity_vertex, vertex_shape)
        self._check_output("normalized_planetary_vorticity_vertex", normalized_planetary_vorticity_vertex, vertex_shape)

        kwargs = dict(
            ssh_ptr=ssh,
            relative_vorticity_ptr=relative_vorticity,
            cells_on_vertex_idx_ptr=mesh.cells_on_vertex_idx,
            kite_areas_on_vertex_ptr=mesh.kite_weights_on_vertex,
            area_triangle_ptr=mesh.area_triangle,
            f_vertex_ptr=mesh.f_vertex,
            active_levels_vertex_ptr=mesh.active_levels_vertex,
            subgrid_wet_volume_vertex_table_ptr=subgrid.subgrid_wet_volume_vertex_table,
            subgrid_ssh_vertex_table_range_ptr=subgrid.subgrid_ssh_vertex_table_range,
            subgrid_vertex_bathymetry_mean_ptr=subgrid.subgrid_vertex_bathymetry_mean,
            normalized_relative_vorticity_vertex_ptr=normalized_relative_vorticity_vertex,
            normalized_planetary_vorticity_vertex_ptr=normalized_planetary_vorticity_vertex,
            num_vertices=mesh.num_vertices,
            vertex_degree=mesh.vertex_degree,
            num_vert_levels=mesh.num_vert_levels,
            num_subgrid_table_levels=subgrid.num_subgrid_table_levels,
            BLOCK_SIZE=self.BLOCK_SIZE,
        )
        if self._logging(current_step):
            compute_vorticity_log_kernel[self.grid(mesh.num_vertices)](
                vertex_skip_count_ptr=self.log.vertex_skip_count,
                vertex_thickness_sum_ptr=self.log.vertex_thickness_sum,
                current_step=current_step,
                **kwargs,
            )
        else:
            compute_vorticity_kernel[self.grid(mesh.num_vertices)](**kwargs)
        return normalized_relative_vorticity_vertex, normalized_planetary_vorticity_vertex

    # ------------------------------------------------------------------ #
    # Initialization
    # ------------------------------------------------------------------ #
    def initialize_ssh_from_layer_thickness(
        self,
        layer_thickness: torch.Tensor,
        ssh: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Derive the initial cell ssh from an initial layer thickness.

        The inverse lookup gives the ssh; a forward lookup of that ssh is kept
        in ``subgrid_layer_thickness_debug`` so callers can check the round trip.
        Accepts ``(num_cells,)`` or ``(num_cells, num_vert_levels)`` thickness;
        only level 0 is used.
        """
        subgrid = self._require_subgrid()
        mesh = self.mesh
        layer_thickness = torch.as_tensor(layer_thickness, device=self.device)
        if layer_thickness.dim() == 2:
            layer_thickness = self._as_input(
                "layer_thickness", layer_thickness, (mesh.num_cells, mesh.num_vert_levels)
            )[:, 0]
        ssh = self.ssh_lookup(layer_thickness, location="cell", out=ssh)
        self.layer_thickness_lookup(ssh, location="cell", out=subgrid.subgrid_layer_thickness_debug)

        residual = (subgrid.subgrid_layer_thickness_debug - layer_thickness).abs().max().item()
        print(f"[rank {self.rank}]: Initialized ssh on {mesh.num_cells} cells, max thickness round trip error {residual:.3e}")
        return ssh

    # ------------------------------------------------------------------ #
    # Log output
    # ------------------------------------------------------------------ #
    def set_log_time(self, time_step: float, num_steps: int, current_time: datetime) -> None:
        if self.log is not None:
            self.log.set_time(time_step, num_steps, current_time)

    def write_log(self) -> None:
        """Reduce the log buffers over ranks and append them to ``log.txt``."""
        if self.log is None:
            return
        self.log.gather_results()
        if self.rank == 0:
            self.log.write_step(self.log_path)
        else:
            self.log.reset_buffers()
