# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""Pure PyTorch implementation of the subgrid edge flux thickness kernels."""

from typing import Tuple

import torch

from subgridwd.phys.torch.lookup import layer_thickness_lookup

DRY_EDGE_TOLERANCE = 1.0e-10


def _edge_flux_center(
    ssh: torch.Tensor,
    cells_on_edge_idx: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
    layer_thick_edge_mean: torch.Tensor,
) -> Tuple[torch.Tensor, torch.Tensor]:
    cell1 = cells_on_edge_idx[:, 0]
    cell2 = cells_on_edge_idx[:, 1]
    ssh_mean = 0.5 * (ssh[cell1] + ssh[cell2])
    thickness = layer_thickness_lookup(ssh_mean, table, table_range, bathymetry_mean)
    is_dry = thickness < DRY_EDGE_TOLERANCE
    return torch.where(is_dry, layer_thick_edge_mean[:, 0], thickness), is_dry


def _edge_flux_upwind(
    ssh: torch.Tensor,
    normal_velocity: torch.Tensor,
    layer_thickness: torch.Tensor,
    cells_on_edge_idx: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
) -> Tuple[torch.Tensor, torch.Tensor]:
    cell1 = cells_on_edge_idx[:, 0]
    cell2 = cells_on_edge_idx[:, 1]
    ssh1 = ssh[cell1]
    ssh2 = ssh[cell2]
    velocity = normal_velocity[:, 0]
    ssh_upwind = torch.where(
        velocity > 0.0, ssh1,
        torch.where(velocity < 0.0, ssh2, 0.5 * (ssh1 + ssh2)),
    )
    thickness = layer_thickness_lookup(ssh_upwind, table, table_range, bathymetry_mean)
    is_dry = thickness < DRY_EDGE_TOLERANCE
    fallback = 0.5 * (layer_thickness[cell1, 0] + layer_thickness[cell2, 0])
    return torch.where(is_dry, fallback, thickness), is_dry


def compute_layer_thick_edge_flux_center_kernel(
    ssh: torch.Tensor,
    cells_on_edge_idx: torch.Tensor,
    subgrid_wet_volume_edge_table: torch.Tensor,
    subgrid_ssh_edge_table_range: torch.Tensor,
    subgrid_edge_bathymetry_mean: torch.Tensor,
    layer_thick_edge_mean: torch.Tensor,
    layer_thick_edge_flux: torch.Tensor,
    num_edges: int,
    num_vert_levels: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    thickness, _ = _edge_flux_center(
        ssh,
        cells_on_edge_idx.reshape(num_edges, 2),
        subgrid_wet_volume_edge_table.reshape(num_edges, num_subgrid_table_levels),
        subgrid_ssh_edge_table_range.reshape(num_edges, 2),
        subgrid_edge_bathymetry_mean,
        layer_thick_edge_mean.reshape(num_edges, num_vert_levels),
    )
    layer_thick_edge_flux.reshape(num_edges, num_vert_levels)[:, 0].copy_(thickness)


def compute_layer_thick_edge_flux_upwind_kernel(
    ssh: torch.Tensor,
    normal_velocity: torch.Tensor,
    layer_thickness: torch.Tensor,
    cells_on_edge_idx: torch.Tensor,
    subgrid_wet_volume_edge_table: torch.Tensor,
    subgrid_ssh_edge_table_range: torch.Tensor,
    subgrid_edge_bathymetry_mean: torch.Tensor,
    layer_thick_edge_flux: torch.Tensor,
    num_edges: int,
    num_cells: int,
    num_vert_levels: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    thickness, _ = _edge_flux_upwind(
        ssh,
        normal_velocity.reshape(num_edges, num_vert_levels),
        layer_thickness.reshape(num_cells, num_vert_levels),
        cells_on_edge_idx.reshape(num_edges, 2),
        subgrid_wet_volume_edge_table.reshape(num_edges, num_subgrid_table_levels),
        subgrid_ssh_edge_table_range.reshape(num_edges, 2),
        subgrid_edge_bathymetry_mean,
    )
    layer_thick_edge_flux.reshape(num_edges, num_vert_levels)[:, 0].copy_(thickness)


# ---------------------------------------------------------------------------
# Log variants (diagnostic; never compiled)
# ---------------------------------------------------------------------------
def compute_layer_thick_edge_flux_center_log_kernel(
    ssh: torch.Tensor,
    cells_on_edge_idx: torch.Tensor,
    subgrid_wet_volume_edge_table: torch.Tensor,
    subgrid_ssh_edge_table_range: torch.Tensor,
    subgrid_edge_bathymetry_mean: torch.Tensor,
    layer_thick_edge_mean: torch.Tensor,
    layer_thick_edge_flux: torch.Tensor,
    edge_fallback_count: torch.Tensor,
    edge_flux_thickness_sum: torch.Tensor,
    current_step: int,
    num_edges: int,
    num_vert_levels: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    """Centered edge flux with per-step fallback counting."""
    thickness, is_dry = _edge_flux_center(
        ssh,
        cells_on_edge_idx.reshape(num_edges, 2),
        subgrid_wet_volume_edge_table.reshape(num_edges, num_subgrid_table_levels),
        subgrid_ssh_edge_table_range.reshape(num_edges, 2),
        subgrid_edge_bathymetry_mean,
        layer_thick_edge_mean.reshape(num_edges, num_vert_levels),
    )
    layer_thick_edge_flux.reshape(num_edges, num_vert_levels)[:, 0].copy_(thickness)
    edge_fallback_count[current_step] += is_dry.sum()
    edge_flux_thickness_sum[current_step] += thickness.sum()


def compute_layer_thick_edge_flux_upwind_log_kernel(
    ssh: torch.Tensor,
    normal_velocity: torch.Tensor,
    layer_thickness: torch.Tensor,
    cells_on_edge_idx: torch.Tensor,
    subgrid_wet_volume_edge_table: torch.Tensor,
    subgrid_ssh_edge_table_range: torch.Tensor,
    subgrid_edge_bathymetry_mean: torch.Tensor,
    layer_thick_edge_flux: torch.Tensor,
    edge_fallback_count: torch.Tensor,
    edge_flux_thickness_sum: torch.Tensor,
    current_step: int,
    num_edges: int,
    num_cells: int,
    num_vert_levels: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    """Upwind edge flux with per-step fallback counting."""
    thickness, is_dry = _edge_flux_upwind(
        ssh,
        normal_velocity.reshape(num_edges, num_vert_levels),
        layer_thickness.reshape(num_cells, num_vert_levels),
        cells_on_edge_idx.reshape(num_edges, 2),
        subgrid_wet_volume_edge_table.reshape(num_edges, num_subgrid_table_levels),
        subgrid_ssh_edge_table_range.reshape(num_edges, 2),
        subgrid_edge_bathymetry_mean,
    )
    layer_thick_edge_flux.reshape(num_edges, num_vert_levels)[:, 0].copy_(thickness)
    edge_fallback_count[current_step] += is_dry.sum()
    edge_flux_thickness_sum[current_step] += thickness.sum()
