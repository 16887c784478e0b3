# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import triton
import triton.language as tl

from subgridwd.phys.triton.utils import interp_table, layer_thickness_at


# -----------------------------------------------------------------------------
# Kernel: ssh -> layer thickness (wet volume per unit area)
# -----------------------------------------------------------------------------
@triton.jit
def compute_layer_thickness_lookup_kernel(
    zeta_ptr,                    # *f32: Sea surface height per element
    table_ptr,                   # *f32: Wet volume table (num_elements, num_levels)
    table_range_ptr,             # *f32: (min, max) ssh range per element
    bathymetry_mean_ptr,         # *f32: Mean bathymetry depth per element
    layer_thickness_ptr,         # *f32: Layer thickness (out)
    num_elements: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_elements

    zeta = tl.load(zeta_ptr + offs, mask=mask, other=0.0)
    layer_thickness = layer_thickness_at(
        zeta, table_ptr, table_range_ptr, bathymetry_mean_ptr, offs, mask,
        num_subgrid_table_levels,
    )
    tl.store(layer_thickness_ptr + offs, layer_thickness, mask=mask)


# -----------------------------------------------------------------------------
# Kernel: ssh -> wet fraction
# -----------------------------------------------------------------------------
@triton.jit
def compute_wet_fraction_lookup_kernel(
    zeta_ptr,                    # *f32: Sea surface height per element
    table_ptr,                   # *f32: Wet fraction table (num_elements, num_levels)
    table_range_ptr,             # *f32: (min, max) ssh range per element
    wet_fraction_ptr,            # *f32: Wet fraction (out)
    num_elements: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_elements

    zeta = tl.load(zeta_ptr + offs, mask=mask, other=0.0)
    table_min = tl.load(table_range_ptr + offs * 2, mask=mask, other=0.0)
    table_max = tl.load(table_range_ptr + offs * 2 + 1, mask=mask, other=1.0)
    delta_z = (table_max - table_min) / (num_subgrid_table_levels - 1)

    interior = interp_table(zeta, table_ptr, offs, table_min, delta_z, mask, num_subgrid_table_levels)
    wet_fraction = tl.where(
        zeta >= table_max,
        1.0,
        tl.where(zeta <= table_min, 0.0, interior),
    )
    tl.store(wet_fraction_ptr + offs, wet_fraction, mask=mask)


# -----------------------------------------------------------------------------
# Kernel: layer thickness -> ssh (inverse lookup)
# -----------------------------------------------------------------------------
@triton.jit
def compute_ssh_lookup_kernel(
    layer_thickness_ptr,         # *f32: Layer thickness per element
    table_ptr,                   # *f32: Wet volume table (num_elements, num_levels)
    table_range_ptr,             # *f32: (min, max) ssh range per element
    bathymetry_mean_ptr,         # *f32: Mean bathymetry depth per element
    bathymetry_min_ptr,          # *f32: Shallowest bathymetry depth per element
    ssh_ptr,                     # *f32: Sea surface height (out)
    num_elements: tl.constexpr,
    num_subgrid_table_levels: tl.constexpr,
    BLOCK_SIZE: tl.constexpr = 128,
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < num_elements

    layer_thickness = tl.load(layer_thickness_ptr + offs, mask=mask, other=0.0)
    table_min = tl.load(table_range_ptr + offs * 2, mask=mask, other=0.0)
    table_max = tl.load(table_range_ptr + offs * 2 + 1, mask=mask, other=1.0)
    bathymetry_mean = tl.load(bathymetry_mean_ptr + offs, mask=mask, other=0.0)
    bathymetry_min = tl.load(bathymetry_min_ptr + offs, mask=mask, other=0.0)
    delta_z = (table_max - table_min) / (num_subgrid_table_levels - 1)

    row = offs * num_subgrid_table_levels
    thick_min = tl.load(table_ptr + row, mask=mask, other=0.0)
    thick_max = tl.load(table_ptr + row + num_subgrid_table_levels - 1, mask=mask, other=1.0)

    # First bin whose thickness interval holds the target wins
    found = tl.zeros([BLOCK_SIZE], dtype=tl.int1)
    interior = table_min
    for i in tl.static_range(num_subgrid_table_levels - 1):
        thick0 = tl.load(table_ptr + row + i, mask=mask, other=0.0)
        thick1 = tl.load(table_ptr + row + i + 1, mask=mask, other=1.0)
        zeta0 = i * delta_z + table_min
        zeta1 = zeta0 + delta_z
        flat = thick1 == thick0
        phi0 = (layer_thickness - thick1) / tl.where(flat, -1.0, thick0 - thick1)
        phi1 = (layer_thickness - thick0) / tl.where(flat, 1.0, thick1 - thick0)
        candidate = tl.where(flat, zeta0, phi0 * zeta0 + phi1 * zeta1)
        hit = (~found) & (layer_thickness >= thick0) & (layer_thickness <= thick1)
        interior = tl.where(hit, candidate, interior)
        found = found | hit

    ssh = tl.where(
        layer_thickness >= thick_max,
        layer_thickness - bathymetry_mean,
        tl.where(layer_thickness <= thick_min, -bathymetry_min, interior),
    )
    tl.store(ssh_ptr + offs, ssh, mask=mask)
