# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import numpy as np
import pytest
import torch

from subgridwd.phys.reference import (layer_thickness_lookup_cpu,
                                      layer_thickness_lookup_scalar,
                                      ssh_lookup_cpu, ssh_lookup_scalar,
                                      wet_fraction_lookup_cpu)
from subgridwd.phys.torch.lookup import (layer_thickness_lookup, ssh_lookup,
                                         wet_fraction_lookup)


@pytest.fixture
def random_tables():
    rng = np.random.default_rng(20240611)
    num_rows, num_levels = 256, 9
    increments = rng.uniform(0.0, 1.0, size=(num_rows, num_levels - 1))
    increments[rng.uniform(size=increments.shape) < 0.1] = 0.0
    table = np.concatenate([np.zeros((num_rows, 1)), np.cumsum(increments, axis=1)], axis=1)
    fraction = table / np.maximum(table[:, -1:], 1e-12)
    low = rng.uniform(-3.0, 0.0, size=num_rows)
    table_range = np.stack([low, low + rng.uniform(0.5, 4.0, size=num_rows)], axis=1)
    mean = table[:, -1] - table_range[:, 1]
    bathymetry_min = -table_range[:, 0]
    return table, fraction, table_range, mean, bathymetry_min


def test_scalar_reference_matches_worked_example():
    table = np.array([0.0, 2.0, 4.0])
    assert layer_thickness_lookup_scalar(0.0, table, -2.0, 2.0, 2.0) == pytest.approx(2.0)
    assert layer_thickness_lookup_scalar(1.0, table, -2.0, 2.0, 2.0) == pytest.approx(3.0)
    assert layer_thickness_lookup_scalar(3.0, table, -2.0, 2.0, 2.0) == pytest.approx(5.0)
    assert layer_thickness_lookup_scalar(-5.0, table, -2.0, 2.0, 2.0) == 0.0
    assert ssh_lookup_scalar(3.0, table, -2.0, 2.0, 2.0, 2.0) == pytest.approx(1.0)


def test_forward_lookup_matches_linear_scan(random_tables):
    table, _, table_range, mean, _ = random_tables
    rng = np.random.default_rng(7)
    width = table_range[:, 1] - table_range[:, 0]
    zeta = table_range[:, 0] + rng.uniform(-0.2, 1.2, size=width.shape) * width
    # Put a quarter of the samples exactly on interior bin boundaries
    num_levels = table.shape[1]
    delta_z = width / (num_levels - 1)
    boundary_level = rng.integers(1, num_levels - 1, size=width.shape)
    on_boundary = rng.uniform(size=width.shape) < 0.25
    zeta[on_boundary] = (boundary_level * delta_z + table_range[:, 0])[on_boundary]

    expected = layer_thickness_lookup_cpu(zeta, table, table_range, mean)
    result = layer_thickness_lookup(
        torch.from_numpy(zeta), torch.from_numpy(table), torch.from_numpy(table_range), torch.from_numpy(mean)
    )
    assert not np.isnan(expected).any()
    np.testing.assert_allclose(result.numpy(), expected, rtol=1e-12, atol=1e-12)


def test_wet_fraction_matches_linear_scan(random_tables):
    _, fraction, table_range, _, _ = random_tables
    rng = np.random.default_rng(11)
    zeta = rng.uniform(table_range[:, 0] - 0.5, table_range[:, 1] + 0.5)

    expected = wet_fraction_lookup_cpu(zeta, fraction, table_range)
    result = wet_fraction_lookup(torch.from_numpy(zeta), torch.from_numpy(fraction), torch.from_numpy(table_range))
    np.testing.assert_allclose(result.numpy(), expected, rtol=1e-12, atol=1e-12)


def test_inverse_lookup_matches_linear_scan(random_tables):
    table, _, table_range, mean, bathymetry_min = random_tables
    rng = np.random.default_rng(13)
    thickness = rng.uniform(-0.5, 1.1, size=table.shape[0]) * table[:, -1]
    # Exact table values exercise the first-bin rule on shared and flat bins
    hit = rng.uniform(size=thickness.shape) < 0.25
    picked = table[np.arange(table.shape[0]), rng.integers(1, table.shape[1] - 1, size=table.shape[0])]
    thickness[hit] = picked[hit]

    expected = ssh_lookup_cpu(thickness, table, table_range, mean, bathymetry_min)
    result = ssh_lookup(
        torch.from_numpy(thickness), torch.from_numpy(table), torch.from_numpy(table_range),
        torch.from_numpy(mean), torch.from_numpy(bathymetry_min),
    )
    assert not np.isnan(expected).any()
    np.testing.assert_allclose(result.numpy(), expected, rtol=1e-12, atol=1e-12)


def test_inverse_lookup_takes_first_bin_on_non_monotone_rows():
    table = np.array([[0.0, 3.0, 1.0, 4.0]])
    table_range = np.array([[0.0, 3.0]])
    zeros = np.zeros(1)
    thickness = np.array([2.0])

    expected = ssh_lookup_cpu(thickness, table, table_range, zeros, zeros)
    result = ssh_lookup(
        torch.from_numpy(thickness), torch.from_numpy(table), torch.from_numpy(table_range),
        torch.from_numpy(zeros), torch.from_numpy(zeros),
    )
    assert expected[0] == pytest.approx(2.0 / 3.0)
    np.testing.assert_allclose(result.numpy(), expected, rtol=1e-12, atol=1e-12)


def test_inverse_lookup_matches_linear_scan_without_monotonicity():
    rng = np.random.default_rng(17)
    num_rows, num_levels = 128, 7
    table = rng.uniform(0.0, 5.0, size=(num_rows, num_levels))
    low = rng.uniform(-3.0, 0.0, size=num_rows)
    table_range = np.stack([low, low + rng.uniform(0.5, 4.0, size=num_rows)], axis=1)
    mean = rng.uniform(0.0, 2.0, size=num_rows)
    bathymetry_min = rng.uniform(0.0, 2.0, size=num_rows)
    thickness = rng.uniform(-0.5, 5.5, size=num_rows)

    expected = ssh_lookup_cpu(thickness, table, table_range, mean, bathymetry_min)
    result = ssh_lookup(
        torch.from_numpy(thickness), torch.from_numpy(table), torch.from_numpy(table_range),
        torch.from_numpy(mean), torch.from_numpy(bathymetry_min),
    )
    assert not np.isnan(expected).any()
    np.testing.assert_allclose(result.numpy(), expected, rtol=1e-12, atol=1e-12)
