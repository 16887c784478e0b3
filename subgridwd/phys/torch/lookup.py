# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""Pure PyTorch implementation of the subgrid table lookups.

All functions are vectorized over elements: ``zeta`` / ``layer_thickness``
are ``(M,)`` tensors and ``table`` is ``(M, num_levels)`` with one row per
element. The bin containing ``zeta`` is located directly from the uniform
bin width and then nudged by at most one bin so that the result matches a
linear scan over the bins, including the rule that the lower bin wins when
``zeta`` sits exactly on a shared boundary.
"""

from typing import Tuple

import torch


def locate_bin(
    zeta: torch.Tensor,
    table_min: torch.Tensor,
    delta_z: torch.Tensor,
    num_levels: int,
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Return ``(lev, zeta0, zeta1)`` of the first bin with zeta0 <= zeta <= zeta1."""
    top = num_levels - 2
    lev = torch.floor((zeta - table_min) / delta_z).clamp(0, top).to(torch.int64)

    zeta1 = lev.to(zeta.dtype) * delta_z + table_min + delta_z
    lev = torch.where((zeta > zeta1) & (lev < top), lev + 1, lev)

    lower_zeta1 = (lev - 1).to(zeta.dtype) * delta_z + table_min + delta_z
    lev = torch.where((lev > 0) & (zeta <= lower_zeta1), lev - 1, lev)

    zeta0 = lev.to(zeta.dtype) * delta_z + table_min
    zeta1 = zeta0 + delta_z
    return lev, zeta0, zeta1


def interpolate_table(
    zeta: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
) -> torch.Tensor:
    """Linear interpolation of ``table`` at ``zeta`` (interior of the range only)."""
    num_levels = table.shape[1]
    table_min = table_range[:, 0]
    table_max = table_range[:, 1]
    delta_z = (table_max - table_min) / (num_levels - 1)

    lev, zeta0, zeta1 = locate_bin(zeta, table_min, delta_z, num_levels)
    value0 = table.gather(1, lev.unsqueeze(-1)).squeeze(-1)
    value1 = table.gather(1, (lev + 1).unsqueeze(-1)).squeeze(-1)
    return ((zeta - zeta0) * value1 - (zeta - zeta1) * value0) / delta_z


def layer_thickness_lookup(
    zeta: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
) -> torch.Tensor:
    """Forward lookup: ssh -> wet volume per unit area."""
    interior = interpolate_table(zeta, table, table_range)
    return torch.where(
        zeta >= table_range[:, 1],
        zeta + bathymetry_mean,
        torch.where(zeta <= table_range[:, 0], torch.zeros_like(zeta), interior),
    )


def wet_fraction_lookup(
    zeta: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
) -> torch.Tensor:
    """Wet fraction lookup: ssh -> fraction of the element that is wet."""
    interior = interpolate_table(zeta, table, table_range)
    return torch.where(
        zeta >= table_range[:, 1],
        torch.ones_like(zeta),
        torch.where(zeta <= table_range[:, 0], torch.zeros_like(zeta), interior),
    )


def ssh_lookup(
    layer_thickness: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
    bathymetry_min: torch.Tensor,
) -> torch.Tensor:
    """Inverse lookup: wet volume per unit area -> ssh.

    Every bin is tested at once and the first one with
    table[i] <= layer_thickness <= table[i+1] is used, so rows that are not
    monotone resolve to the same bin as a linear scan.
    """
    num_levels = table.shape[1]
    table_min = table_range[:, 0]
    table_max = table_range[:, 1]
    delta_z = (table_max - table_min) / (num_levels - 1)

    thick_min = table[:, 0]
    thick_max = table[:, -1]

    target = layer_thickness.unsqueeze(-1)
    hit = (table[:, :-1] <= target) & (target <= table[:, 1:])
    lev = hit.to(torch.int32).argmax(dim=1)

    thick0 = table.gather(1, lev.unsqueeze(-1)).squeeze(-1)
    thick1 = table.gather(1, (lev + 1).unsqueeze(-1)).squeeze(-1)
    zeta0 = lev.to(table.dtype) * delta_z + table_min
    zeta1 = zeta0 + delta_z

    # A flat bin is hit only when the target equals both ends; it maps to zeta0
    flat = thick1 == thick0
    phi0 = (layer_thickness - thick1) / torch.where(flat, -1.0, thick0 - thick1)
    phi1 = (layer_thickness - thick0) / torch.where(flat, 1.0, thick1 - thick0)
    interior = torch.where(flat, zeta0, phi0 * zeta0 + phi1 * zeta1)

    return torch.where(
        layer_thickness >= thick_max,
        layer_thickness - bathymetry_mean,
        torch.where(layer_thickness <= thick_min, -bathymetry_min, interior),
    )


# ---------------------------------------------------------------------------
# Kernels (in-place, Triton calling convention without the ``_ptr`` suffix)
# ---------------------------------------------------------------------------
def compute_layer_thickness_lookup_kernel(
    zeta: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
    layer_thickness: torch.Tensor,
    num_elements: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    layer_thickness.copy_(layer_thickness_lookup(
        zeta,
        table.reshape(num_elements, num_subgrid_table_levels),
        table_range.reshape(num_elements, 2),
        bathymetry_mean,
    ))


def compute_wet_fraction_lookup_kernel(
    zeta: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    wet_fraction: torch.Tensor,
    num_elements: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    wet_fraction.copy_(wet_fraction_lookup(
        zeta,
        table.reshape(num_elements, num_subgrid_table_levels),
        table_range.reshape(num_elements, 2),
    ))


def compute_ssh_lookup_kernel(
    layer_thickness: torch.Tensor,
    table: torch.Tensor,
    table_range: torch.Tensor,
    bathymetry_mean: torch.Tensor,
    bathymetry_min: torch.Tensor,
    ssh: torch.Tensor,
    num_elements: int,
    num_subgrid_table_levels: int,
    BLOCK_SIZE: int = 128,
) -> None:
    ssh.copy_(ssh_lookup(
        layer_thickness,
        table.reshape(num_elements, num_subgrid_table_levels),
        table_range.reshape(num_elements, 2),
        bathymetry_mean,
        bathymetry_min,
    ))
