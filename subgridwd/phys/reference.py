# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
CPU reference implementation of the subgrid table lookups for verification.

Each scalar function scans the bins of a single table row in order and
interpolates inside the first bin that contains the input. A ``nan`` result
means no bin matched, which only happens for malformed tables.
"""
from __future__ import annotations

import numpy as np
from numba import njit


# ---------------------------------------------------------------------------
# Scalar kernels
# ---------------------------------------------------------------------------

@njit(cache=True)
def layer_thickness_lookup_scalar(
    zeta: float,
    table: np.ndarray,          # (num_levels,)
    table_min: float,
    table_max: float,
    bathymetry_mean: float,
) -> float:
    if zeta >= table_max:
        return zeta + bathymetry_mean
    if zeta <= table_min:
        return 0.0

    num_levels = table.shape[0]
    delta_z = (table_max - table_min) / (num_levels - 1)
    for i in range(num_levels - 1):
        zeta0 = i * delta_z + table_min
        zeta1 = zeta0 + delta_z
        if zeta0 <= zeta <= zeta1:
            return ((zeta - zeta0) * table[i + 1] - (zeta - zeta1) * table[i]) / delta_z
    return np.nan


@njit(cache=True)
def wet_fraction_lookup_scalar(
    zeta: float,
    table: np.ndarray,
    table_min: float,
    table_max: float,
) -> float:
    if zeta >= table_max:
        return 1.0
    if zeta <= table_min:
        return 0.0

    num_levels = table.shape[0]
    delta_z = (table_max - table_min) / (num_levels - 1)
    for i in range(num_levels - 1):
        zeta0 = i * delta_z + table_min
        zeta1 = zeta0 + delta_z
        if zeta0 <= zeta <= zeta1:
            return ((zeta - zeta0) * table[i + 1] - (zeta - zeta1) * table[i]) / delta_z
    return np.nan


@njit(cache=True)
def ssh_lookup_scalar(
    layer_thickness: float,
    table: np.ndarray,
    table_min: float,
    table_max: float,
    bathymetry_mean: float,
    bathymetry_min: float,
) -> float:
    num_levels = table.shape[0]
    if layer_thickness >= table[num_levels - 1]:
        return layer_thickness - bathymetry_mean
    if layer_thickness <= table[0]:
        return -bathymetry_min

    delta_z = (table_max - table_min) / (num_levels - 1)
    for i in range(num_levels - 1):
        thick0 = table[i]
        thick1 = table[i + 1]
        if thick0 <= layer_thickness <= thick1:
            zeta0 = i * delta_z + table_min
            zeta1 = zeta0 + delta_z
            if thick1 == thick0:
                return zeta0
            phi0 = (layer_thickness - thick1) / (thick0 - thick1)
            phi1 = (layer_thickness - thick0) / (thick1 - thick0)
            return phi0 * zeta0 + phi1 * zeta1
    return np.nan


# ---------------------------------------------------------------------------
# Row-wise loops
# ---------------------------------------------------------------------------

@njit(cache=True)
def layer_thickness_lookup_cpu(
    zeta: np.ndarray,           # (M,)
    table: np.ndarray,          # (M, num_levels)
    table_range: np.ndarray,    # (M, 2)
    bathymetry_mean: np.ndarray,
) -> np.ndarray:
    out = np.empty(zeta.shape[0], dtype=np.float64)
    for idx in range(zeta.shape[0]):
        out[idx] = layer_thickness_lookup_scalar(
            zeta[idx], table[idx], table_range[idx, 0], table_range[idx, 1], bathymetry_mean[idx]
        )
    return out


@njit(cache=True)
def wet_fraction_lookup_cpu(
    zeta: np.ndarray,
    table: np.ndarray,
    table_range: np.ndarray,
) -> np.ndarray:
    out = np.empty(zeta.shape[0], dtype=np.float64)
    for idx in range(zeta.shape[0]):
        out[idx] = wet_fraction_lookup_scalar(
            zeta[idx], table[idx], table_range[idx, 0], table_range[idx, 1]
        )
    return out


@njit(cache=True)
def ssh_lookup_cpu(
    layer_thickness: np.ndarray,
    table: np.ndarray,
    table_range: np.ndarray,
    bathymetry_mean: np.ndarray,
    bathymetry_min: np.ndarray,
) -> np.ndarray:
    out = np.empty(layer_thickness.shape[0], dtype=np.float64)
    for idx in range(layer_thickness.shape[0]):
        out[idx] = ssh_lookup_scalar(
            layer_thickness[idx], table[idx], table_range[idx, 0], table_range[idx, 1],
            bathymetry_mean[idx], bathymetry_min[idx],
        )
    return out
