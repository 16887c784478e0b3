# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import triton
import triton.language as tl

from subgridwd.phys.triton.utils import layer_thickness_at

DRY_EDGE_TOLERANCE: tl.constexpr = 1.0e-10


# -----------------------------------------------------------------------------
# Kernel: centered edge flux thickness
# -----------------------------------------------------------------------------
@triton.jit
def compute_layer_thick_edge_flux_center_kernel(
    ssh_ptr,                             # *f32: Sea surface height per cell
    cells_on_edge_idx_ptr,               # *i64: Two neighbouring cells per edge
    subgrid_wet_volume_edge_table_ptr,   # *f32: Edge wet volume table
    subgrid_ssh_edge_table_range_ptr,    # *f32: Edge (min, max) ssh range
    subgrid_edge_bathymetry_mean_ptr,    # *f32: Edge mean bathymetry depth
    layer_thick_edge_mean_ptr,           # *f32: Host-provided mean edge thickness (fallback)
    layer_thick_edge_flux_ptr,           # *f32: Edge flux thickness (out, level 0)
    num_edges: tl.constexpr,
    num_vert_levels: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_edges

    cell1 = tl.load(cells_on_edge_idx_ptr + offs * 2, mask=mask, other=0)
    cell2 = tl.load(cells_on_edge_idx_ptr + offs * 2 + 1, mask=mask, other=0)
    ssh1 = tl.load(ssh_ptr + cell1, mask=mask, other=0.0)
    ssh2 = tl.load(ssh_ptr + cell2, mask=mask, other=0.0)

    thickness = layer_thickness_at(
        0.5 * (ssh1 + ssh2),
        subgrid_wet_volume_edge_table_ptr, subgrid_ssh_edge_table_range_ptr,
        subgrid_edge_bathymetry_mean_ptr, offs, mask, num_subgrid_table_levels,
    )
    fallback = tl.load(layer_thick_edge_mean_ptr + offs * num_vert_levels, mask=mask, other=0.0)
    thickness = tl.where(thickness < DRY_EDGE_TOLERANCE, fallback, thickness)
    tl.store(layer_thick_edge_flux_ptr + offs * num_vert_levels, thickness, mask=mask)


@triton.jit
def compute_layer_thick_edge_flux_center_log_kernel(
    ssh_ptr,
    cells_on_edge_idx_ptr,
    subgrid_wet_volume_edge_table_ptr,
    subgrid_ssh_edge_table_range_ptr,
    subgrid_edge_bathymetry_mean_ptr,
    layer_thick_edge_mean_ptr,
    layer_thick_edge_flux_ptr,
    # log buffers
    edge_fallback_count_ptr,             # *i64
    edge_flux_thickness_sum_ptr,         # *f32
    current_step,
    num_edges: tl.constexpr,
    num_vert_levels: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_edges

    cell1 = tl.load(cells_on_edge_idx_ptr + offs * 2, mask=mask, other=0)
    cell2 = tl.load(cells_on_edge_idx_ptr + offs * 2 + 1, mask=mask, other=0)
    ssh1 = tl.load(ssh_ptr + cell1, mask=mask, other=0.0)
    ssh2 = tl.load(ssh_ptr + cell2, mask=mask, other=0.0)

    thickness = layer_thickness_at(
        0.5 * (ssh1 + ssh2),
        subgrid_wet_volume_edge_table_ptr, subgrid_ssh_edge_table_range_ptr,
        subgrid_edge_bathymetry_mean_ptr, offs, mask, num_subgrid_table_levels,
    )
    is_dry = (thickness < DRY_EDGE_TOLERANCE) & mask
    fallback = tl.load(layer_thick_edge_mean_ptr + offs * num_vert_levels, mask=mask, other=0.0)
    thickness = tl.where(is_dry, fallback, thickness)
    tl.store(layer_thick_edge_flux_ptr + offs * num_vert_levels, thickness, mask=mask)

    tl.atomic_add(edge_fallback_count_ptr + current_step, tl.sum(is_dry.to(tl.int64)))
    tl.atomic_add(edge_flux_thickness_sum_ptr + current_step, tl.sum(tl.where(mask, thickness, 0.0)))


# -----------------------------------------------------------------------------
# Kernel: upwind edge flux thickness
# -----------------------------------------------------------------------------
@triton.jit
def compute_layer_thick_edge_flux_upwind_kernel(
    ssh_ptr,                             # *f32: Sea surface height per cell
    normal_velocity_ptr,                 # *f32: Edge normal velocity (level 0 used)
    layer_thickness_ptr,                 # *f32: Cell layer thickness (fallback)
    cells_on_edge_idx_ptr,               # *i64: Two neighbouring cells per edge
    subgrid_wet_volume_edge_table_ptr,   # *f32: Edge wet volume table
    subgrid_ssh_edge_table_range_ptr,    # *f32: Edge (min, max) ssh range
    subgrid_edge_bathymetry_mean_ptr,    # *f32: Edge mean bathymetry depth
    layer_thick_edge_flux_ptr,           # *f32: Edge flux thickness (out, level 0)
    num_edges: tl.constexpr,
    num_cells: tl.constexpr,
    num_vert_levels: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_edges

    cell1 = tl.load(cells_on_edge_idx_ptr + offs * 2, mask=mask, other=0)
    cell2 = tl.load(cells_on_edge_idx_ptr + offs * 2 + 1, mask=mask, other=0)
    ssh1 = tl.load(ssh_ptr + cell1, mask=mask, other=0.0)
    ssh2 = tl.load(ssh_ptr + cell2, mask=mask, other=0.0)
    velocity = tl.load(normal_velocity_ptr + offs * num_vert_levels, mask=mask, other=0.0)

    ssh_upwind = tl.where(
        velocity > 0.0, ssh1,
        tl.where(velocity < 0.0, ssh2, 0.5 * (ssh1 + ssh2)),
    )
    thickness = layer_thickness_at(
        ssh_upwind,
        subgrid_wet_volume_edge_table_ptr, subgrid_ssh_edge_table_range_ptr,
        subgrid_edge_bathymetry_mean_ptr, offs, mask, num_subgrid_table_levels,
    )
    thick1 = tl.load(layer_thickness_ptr + cell1 * num_vert_levels, mask=mask, other=0.0)
    thick2 = tl.load(layer_thickness_ptr + cell2 * num_vert_levels, mask=mask, other=0.0)
    thickness = tl.where(thickness < DRY_EDGE_TOLERANCE, 0.5 * (thick1 + thick2), thickness)
    tl.store(layer_thick_edge_flux_ptr + offs * num_vert_levels, thickness, mask=mask)


@triton.jit
def compute_layer_thick_edge_flux_upwind_log_kernel(
    ssh_ptr,
    normal_velocity_ptr,
    layer_thickness_ptr,
    cells_on_edge_idx_ptr,
    subgrid_wet_volume_edge_table_ptr,
    subgrid_ssh_edge_table_range_ptr,
    subgrid_edge_bathymetry_mean_ptr,
    layer_thick_edge_flux_ptr,
    # log buffers
    edge_fallback_count_ptr,             # *i64
    edge_flux_thickness_sum_ptr,         # *f32
    current_step,
    num_edges: tl.constexpr,
    num_cells: tl.constexpr,
    num_vert_levels: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_edges

    cell1 = tl.load(cells_on_edge_idx_ptr + offs * 2, mask=mask, other=0)
    cell2 = tl.load(cells_on_edge_idx_ptr + offs * 2 + 1, mask=mask, other=0)
    ssh1 = tl.load(ssh_ptr + cell1, mask=mask, other=0.0)
    ssh2 = tl.load(ssh_ptr + cell2, mask=mask, other=0.0)
    velocity = tl.load(normal_velocity_ptr + offs * num_vert_levels, mask=mask, other=0.0)

    ssh_upwind = tl.where(
        velocity > 0.0, ssh1,
        tl.where(velocity < 0.0, ssh2, 0.5 * (ssh1 + ssh2)),
    )
    thickness = layer_thickness_at(
        ssh_upwind,
        subgrid_wet_volume_edge_table_ptr, subgrid_ssh_edge_table_range_ptr,
        subgrid_edge_bathymetry_mean_ptr, offs, mask, num_subgrid_table_levels,
    )
    is_dry = (thickness < DRY_EDGE_TOLERANCE) & mask
    thick1 = tl.load(layer_thickness_ptr + cell1 * num_vert_levels, mask=mask, other=0.0)
    thick2 = tl.load(layer_thickness_ptr + cell2 * num_vert_levels, mask=mask, other=0.0)
    thickness = tl.where(is_dry, 0.5 * (thick1 + thick2), thickness)
    tl.store(layer_thick_edge_flux_ptr + offs * num_vert_levels, thickness, mask=mask)

    tl.atomic_add(edge_fallback_count_ptr + current_step, tl.sum(is_dry.to(tl.int64)))
    tl.atomic_add(edge_flux_thickness_sum_ptr + current_step, tl.sum(tl.where(mask, thickness, 0.0)))
