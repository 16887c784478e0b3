# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""Pure PyTorch implementation of the subgrid vorticity normalization."""

from typing import Tuple

import torch

from subgridwd.phys.torch.lookup import layer_thickness_lookup


def vertex_ssh(
    ssh: torch.Tensor,
    cells_on_vertex_idx: torch.Tensor,
    kite_areas_on_vertex: torch.Tensor,
    area_triangle: torch.Tensor,
) -> torch.Tensor:
    """Kite-area weighted ssh at vertices."""
    inv_area_triangle = 1.0 / area_triangle
    ssh_vertex = torch.zeros_like(area_triangle)
    # Accumulate cell by cell to keep the summation order fixed
    for i in range(cells_on_vertex_idx.shape[1]):
        ssh_vertex = ssh_vertex + ssh[cells_on_vertex_idx[:, i]] * kite_areas_on_vertex[:, i]
    return ssh_vertex * inv_area_triangle


def _normalize_vorticity(
    ssh: torch.Tensor,
    relative_vorticity: torch.Tensor,
    cells_on_vertex_idx: torch.Tensor,
    kite_areas_on_vertex: torch.Tensor,
    area_triangle: torch.Tensor,
    f_vertex: torch.Tensor,
    active_levels_vertex: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
    normalized_relative_vorticity_vertex: torch.Tensor,
    normalized_planetary_vorticity_vertex: torch.Tensor,
) -> Tuple[torch.Tensor, torch.Tensor]:
    num_vert_levels = relative_vorticity.shape[1]
    ssh_vertex = vertex_ssh(ssh, cells_on_vertex_idx, kite_areas_on_vertex, area_triangle)
    thickness = layer_thickness_lookup(ssh_vertex, table, table_range, bathymetry_mean)

    levels = torch.arange(num_vert_levels, device=ssh.device)
    in_column = levels.unsqueeze(0) < active_levels_vertex.unsqueeze(1)
    is_dry = (thickness == 0.0).unsqueeze(1)
    update = in_column & ~is_dry

    # Dry vertices keep their previous values; the safe divisor is never selected
    thickness_safe = torch.where(thickness == 0.0, 1.0, thickness).unsqueeze(1)
    normalized_relative_vorticity_vertex.copy_(torch.where(
        update, relative_vorticity / thickness_safe, normalized_relative_vorticity_vertex,
    ))
    normalized_planetary_vorticity_vertex.copy_(torch.where(
        update, (f_vertex.unsqueeze(1) / thickness_safe).expand_as(relative_vorticity),
        normalized_planetary_vorticity_vertex,
    ))
    return thickness, in_column & is_dry


def compute_vorticity_kernel(
    ssh: torch.Tensor,
    relative_vorticity: torch.Tensor,
    cells_on_vertex_idx: torch.Tensor,
    kite_areas_on_vertex: torch.Tensor,
    area_triangle: torch.Tensor,
    f_vertex: torch.Tensor,
    active_levels_vertex: torch.Tensor,
    subgrid_wet_volume_vertex_table: torch.Tensor,
    subgrid_ssh_vertex_table_range: torch.Tensor,
    subgrid_vertex_bathymetry_mean: torch.Tensor,
    normalized_relative_vorticity_vertex: torch.Tensor,
    normalized_planetary_vorticity_vertex: torch.Tensor,
    num_vertices: int,
    vertex_degree: int,
    num_vert_levels: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    _normalize_vorticity(
        ssh,
        relative_vorticity.reshape(num_vertices, num_vert_levels),
        cells_on_vertex_idx.reshape(num_vertices, vertex_degree),
        kite_areas_on_vertex.reshape(num_vertices, vertex_degree),
        area_triangle,
        f_vertex,
        active_levels_vertex,
        subgrid_wet_volume_vertex_table.reshape(num_vertices, num_subgrid_table_levels),
        subgrid_ssh_vertex_table_range.reshape(num_vertices, 2),
        subgrid_vertex_bathymetry_mean,
        normalized_relative_vorticity_vertex.reshape(num_vertices, num_vert_levels),
        normalized_planetary_vorticity_vertex.reshape(num_vertices, num_vert_levels),
    )


def compute_vorticity_log_kernel(
    ssh: torch.Tensor,
    relative_vorticity: torch.Tensor,
    cells_on_vertex_idx: torch.Tensor,
    kite_areas_on_vertex: torch.Tensor,
    area_triangle: torch.Tensor,
    f_vertex: torch.Tensor,
    active_levels_vertex: torch.Tensor,
    subgrid_wet_volume_vertex_table: torch.Tensor,
    subgrid_ssh_vertex_table_range: torch.Tensor,
    subgrid_vertex_bathymetry_mean: torch.Tensor,
    normalized_relative_vorticity_vertex: torch.Tensor,
    normalized_planetary_vorticity_vertex: torch.Tensor,
    vertex_skip_count: torch.Tensor,
    vertex_thickness_sum: torch.Tensor,
    current_step: int,
    num_vertices: int,
    vertex_degree: int,
    num_vert_levels: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    """Vorticity normalization with per-step dry vertex counting."""
    thickness, skipped = _normalize_vorticity(
        ssh,
        relative_vorticity.reshape(num_vertices, num_vert_levels),
        cells_on_vertex_idx.reshape(num_vertices, vertex_degree),
        kite_areas_on_vertex.reshape(num_vertices, vertex_degree),
        area_triangle,
        f_vertex,
        active_levels_vertex,
        subgrid_wet_volume_vertex_table.reshape(num_vertices, num_subgrid_table_levels),
        subgrid_ssh_vertex_table_range.reshape(num_vertices, 2),
        subgrid_vertex_bathymetry_mean,
        normalized_relative_vorticity_vertex.reshape(num_vertices, num_vert_levels),
        normalized_planetary_vorticity_vertex.reshape(num_vertices, num_vert_levels),
    )
    vertex_skip_count[current_step] += skipped.sum()
    vertex_thickness_sum[current_step] += thickness.sum()
