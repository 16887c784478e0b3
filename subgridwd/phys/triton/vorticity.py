# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import triton
import triton.language as tl

from subgridwd.phys.triton.utils import layer_thickness_at


@triton.jit
def _vertex_thickness(
    ssh_ptr, cells_on_vertex_idx_ptr, kite_areas_on_vertex_ptr, area_triangle_ptr,
    subgrid_wet_volume_vertex_table_ptr, subgrid_ssh_vertex_table_range_ptr,
    subgrid_vertex_bathymetry_mean_ptr, offs, mask,
    vertex_degree: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
):
    area_triangle = tl.load(area_triangle_ptr + offs, mask=mask, other=1.0)
    inv_area_triangle = 1.0 / area_triangle

    ssh_vertex = tl.zeros_like(area_triangle)
    for i in tl.static_range(vertex_degree):
        cell = tl.load(cells_on_vertex_idx_ptr + offs * vertex_degree + i, mask=mask, other=0)
        kite_area = tl.load(kite_areas_on_vertex_ptr + offs * vertex_degree + i, mask=mask, other=0.0)
        ssh_vertex += tl.load(ssh_ptr + cell, mask=mask, other=0.0) * kite_area
    ssh_vertex = ssh_vertex * inv_area_triangle

    return layer_thickness_at(
        ssh_vertex,
        subgrid_wet_volume_vertex_table_ptr, subgrid_ssh_vertex_table_range_ptr,
        subgrid_vertex_bathymetry_mean_ptr, offs, mask, num_subgrid_table_levels,
    )


# -----------------------------------------------------------------------------
# Kernel: thickness-normalized relative and planetary vorticity at vertices
# -----------------------------------------------------------------------------
@triton.jit
def compute_vorticity_kernel(
    ssh_ptr,                                   # *f32: Sea surface height per cell
    relative_vorticity_ptr,                    # *f32: Relative vorticity (num_vertices, num_vert_levels)
    cells_on_vertex_idx_ptr,                   # *i64: Cells around each vertex
    kite_areas_on_vertex_ptr,                  # *f32: Kite areas around each vertex
    area_triangle_ptr,                         # *f32: Dual cell area
    f_vertex_ptr,                              # *f32: Coriolis parameter at vertices
    active_levels_vertex_ptr,                  # *i64: Number of active levels per vertex
    subgrid_wet_volume_vertex_table_ptr,       # *f32: Vertex wet volume table
    subgrid_ssh_vertex_table_range_ptr,        # *f32: Vertex (min, max) ssh range
    subgrid_vertex_bathymetry_mean_ptr,        # *f32: Vertex mean bathymetry depth
    normalized_relative_vorticity_vertex_ptr,  # *f32: (in/out, untouched where dry)
    normalized_planetary_vorticity_vertex_ptr, # *f32: (in/out, untouched where dry)
    num_vertices: tl.constexpr,
    vertex_degree: tl.constexpr,
    num_vert_levels: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_vertices

    thickness = _vertex_thickness(
        ssh_ptr, cells_on_vertex_idx_ptr, kite_areas_on_vertex_ptr, area_triangle_ptr,
        subgrid_wet_volume_vertex_table_ptr, subgrid_ssh_vertex_table_range_ptr,
        subgrid_vertex_bathymetry_mean_ptr, offs, mask,
        vertex_degree, num_subgrid_table_levels,
    )
    wet = thickness != 0.0
    safe_thickness = tl.where(wet, thickness, 1.0)
    f_vertex = tl.load(f_vertex_ptr + offs, mask=mask, other=0.0)
    active_levels = tl.load(active_levels_vertex_ptr + offs, mask=mask, other=0)

    for k in tl.static_range(num_vert_levels):
        update = mask & wet & (k < active_levels)
        idx = offs * num_vert_levels + k
        relative_vorticity = tl.load(relative_vorticity_ptr + idx, mask=update, other=0.0)
        tl.store(normalized_relative_vorticity_vertex_ptr + idx, relative_vorticity / safe_thickness, mask=update)
        tl.store(normalized_planetary_vorticity_vertex_ptr + idx, f_vertex / safe_thickness, mask=update)


@triton.jit
def compute_vorticity_log_kernel(
    ssh_ptr,
    relative_vorticity_ptr,
    cells_on_vertex_idx_ptr,
    kite_areas_on_vertex_ptr,
    area_triangle_ptr,
    f_vertex_ptr,
    active_levels_vertex_ptr,
    subgrid_wet_volume_vertex_table_ptr,
    subgrid_ssh_vertex_table_range_ptr,
    subgrid_vertex_bathymetry_mean_ptr,
    normalized_relative_vorticity_vertex_ptr,
    normalized_planetary_vorticity_vertex_ptr,
    # log buffers
    vertex_skip_count_ptr,                     # *i64
    vertex_thickness_sum_ptr,                  # *f32
    current_step,
    num_vertices: tl.constexpr,
    vertex_degree: tl.constexpr,
    num_vert_levels: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_vertices

    thickness = _vertex_thickness(
        ssh_ptr, cells_on_vertex_idx_ptr, kite_areas_on_vertex_ptr, area_triangle_ptr,
        subgrid_wet_volume_vertex_table_ptr, subgrid_ssh_vertex_table_range_ptr,
        subgrid_vertex_bathymetry_mean_ptr, offs, mask,
        vertex_degree, num_subgrid_table_levels,
    )
    wet = thickness != 0.0
    safe_thickness = tl.where(wet, thickness, 1.0)
    f_vertex = tl.load(f_vertex_ptr + offs, mask=mask, other=0.0)
    active_levels = tl.load(active_levels_vertex_ptr + offs, mask=mask, other=0)

    skipped = tl.zeros([BLOCK_SIZE], dtype=tl.int64)
    for k in tl.static_range(num_vert_levels):
        in_column = mask & (k < active_levels)
        update = in_column & wet
        skipped += (in_column & ~wet).to(tl.int64)
        idx = offs * num_vert_levels + k
        relative_vorticity = tl.load(relative_vorticity_ptr + idx, mask=update, other=0.0)
        tl.store(normalized_relative_vorticity_vertex_ptr + idx, relative_vorticity / safe_thickness, mask=update)
        tl.store(normalized_planetary_vorticity_vertex_ptr + idx, f_vertex / safe_thickness, mask=update)

    tl.atomic_add(vertex_skip_count_ptr + current_step, tl.sum(skipped))
    tl.atomic_add(vertex_thickness_sum_ptr + current_step, tl.sum(tl.where(mask, thickness, 0.0)))
