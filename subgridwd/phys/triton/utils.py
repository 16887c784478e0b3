# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""Utility helpers for Triton subgrid kernels."""

import triton
import triton.language as tl


@triton.jit
def locate_bin(zeta, table_min, delta_z, num_levels: tl.constexpr):
    """Index of the first bin with zeta0 <= zeta <= zeta1.

    The uniform bin width gives the candidate directly; one correction step
    in each direction reproduces a linear scan, including the lower bin
    winning on a shared boundary.
    """
    top = num_levels - 2
    lev = tl.floor((zeta - table_min) / delta_z)
    lev = tl.minimum(tl.maximum(lev, 0.0), top * 1.0).to(tl.int32)

    zeta1 = lev * delta_z + table_min + delta_z
    lev = tl.where((zeta > zeta1) & (lev < top), lev + 1, lev)

    lower_zeta1 = (lev - 1) * delta_z + table_min + delta_z
    lev = tl.where((lev > 0) & (zeta <= lower_zeta1), lev - 1, lev)
    return lev


@triton.jit
def interp_table(zeta, table_ptr, row, table_min, delta_z, mask, num_levels: tl.constexpr):
    lev = locate_bin(zeta, table_min, delta_z, num_levels)
    zeta0 = lev * delta_z + table_min
    zeta1 = zeta0 + delta_z
    value0 = tl.load(table_ptr + row * num_levels + lev, mask=mask, other=0.0)
    value1 = tl.load(table_ptr + row * num_levels + lev + 1, mask=mask, other=0.0)
    return ((zeta - zeta0) * value1 - (zeta - zeta1) * value0) / delta_z


@triton.jit
def layer_thickness_at(
    zeta, table_ptr, table_range_ptr, bathymetry_mean_ptr, row, mask,
    num_levels: tl.constexpr,
):
    """Forward lookup of the wet volume per unit area for rows ``row``."""
    table_min = tl.load(table_range_ptr + row * 2, mask=mask, other=0.0)
    table_max = tl.load(table_range_ptr + row * 2 + 1, mask=mask, other=1.0)
    bathymetry_mean = tl.load(bathymetry_mean_ptr + row, mask=mask, other=0.0)
    delta_z = (table_max - table_min) / (num_levels - 1)

    interior = interp_table(zeta, table_ptr, row, table_min, delta_z, mask, num_levels)
    return tl.where(
        zeta >= table_max,
        zeta + bathymetry_mean,
        tl.where(zeta <= table_min, 0.0, interior),
    )
