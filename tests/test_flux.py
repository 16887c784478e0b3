# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import pytest
import torch

from subgridwd.phys.torch.flux import DRY_EDGE_TOLERANCE
from tests.conftest import build_boundary_mesh_data

F64 = dict(dtype=torch.float64)


def test_center_flux_uses_mean_ssh_and_dry_fallback(model):
    ssh = torch.tensor([1.0, 0.0, -3.0, -3.0], **F64)
    edge_mean = torch.tensor([[7.0], [8.0], [9.0]], **F64)
    flux = torch.zeros((3, 1), **F64)

    model.compute_layer_thick_edge_flux_center(ssh, edge_mean, flux)

    # Edge (3, 4) sits below the table range, so it takes the host mean
    torch.testing.assert_close(flux[:, 0], torch.tensor([2.5, 0.5, 9.0], **F64))


def test_upwind_flux_selects_cell_by_velocity_sign(model):
    ssh = torch.tensor([1.0, -1.0, 0.0, 0.0], **F64)
    layer_thickness = torch.ones((4, 1), **F64)
    flux = torch.zeros((3, 1), **F64)

    results = []
    for velocity in (1.0, -1.0, 0.0):
        normal_velocity = torch.full((3, 1), velocity, **F64)
        model.compute_layer_thick_edge_flux_upwind(ssh, normal_velocity, layer_thickness, flux)
        results.append(flux[0, 0].item())

    # cell 1 (ssh 1), cell 2 (ssh -1), then their mean (ssh 0)
    assert results == pytest.approx([3.0, 1.0, 2.0])


def test_upwind_flux_dry_fallback_averages_cell_thickness(model):
    ssh = torch.tensor([1.0, 0.0, -3.0, -3.0], **F64)
    normal_velocity = torch.tensor([[1.0], [-1.0], [0.0]], **F64)
    layer_thickness = torch.tensor([[1.0], [2.0], [3.0], [4.0]], **F64)
    flux = torch.zeros((3, 1), **F64)

    model.compute_layer_thick_edge_flux_upwind(ssh, normal_velocity, layer_thickness, flux)

    torch.testing.assert_close(flux[:, 0], torch.tensor([3.0, 2.5, 3.5], **F64))


def test_near_zero_lookup_counts_as_dry(model):
    # ssh just above the table minimum gives a thickness far below the tolerance
    ssh = torch.full((4,), -2.0 + 1e-12, **F64)
    edge_mean = torch.full((3, 1), 0.25, **F64)
    flux = torch.zeros((3, 1), **F64)

    model.compute_layer_thick_edge_flux_center(ssh, edge_mean, flux)

    assert 0.0 < 1e-12 < DRY_EDGE_TOLERANCE
    torch.testing.assert_close(flux[:, 0], torch.full((3,), 0.25, **F64))


def test_flux_writes_only_level_zero(make_model):
    from tests.conftest import build_mesh_data

    model = make_model(build_mesh_data(num_vert_levels=2), ocean_run_mode="init")
    ssh = torch.tensor([1.0, 0.0, -3.0, -3.0], **F64)
    edge_mean = torch.full((3, 2), 9.0, **F64)
    flux = torch.full((3, 2), -1.0, **F64)

    model.compute_layer_thick_edge_flux_center(ssh, edge_mean, flux)

    torch.testing.assert_close(flux[:, 0], torch.tensor([2.5, 0.5, 9.0], **F64))
    torch.testing.assert_close(flux[:, 1], torch.full((3,), -1.0, **F64))


def test_flux_rejects_misshaped_state(model):
    with pytest.raises(ValueError, match="ssh"):
        model.compute_layer_thick_edge_flux_center(
            torch.zeros(5, **F64), torch.zeros((3, 1), **F64), torch.zeros((3, 1), **F64)
        )
    with pytest.raises(ValueError, match="layer_thick_edge_flux"):
        model.compute_layer_thick_edge_flux_center(
            torch.zeros(4, **F64), torch.zeros((3, 1), **F64), torch.zeros(3, **F64)
        )


def test_boundary_edge_uses_its_interior_cell(make_model):
    model = make_model(build_boundary_mesh_data())
    ssh = torch.tensor([1.0, 0.0, -3.0, 1.0], **F64)
    flux = torch.zeros((3, 1), **F64)

    model.compute_layer_thick_edge_flux_center(ssh, torch.full((3, 1), 9.0, **F64), flux)
    torch.testing.assert_close(flux[:, 0], torch.tensor([2.5, 0.5, 3.0], **F64))

    # Velocity towards the outside still reads cell 4
    normal_velocity = torch.tensor([[1.0], [-1.0], [-1.0]], **F64)
    layer_thickness = torch.tensor([[3.0], [2.0], [0.5], [4.0]], **F64)
    model.compute_layer_thick_edge_flux_upwind(ssh, normal_velocity, layer_thickness, flux)
    torch.testing.assert_close(flux[:, 0], torch.tensor([3.0, 1.25, 3.0], **F64))


def test_dry_boundary_edge_falls_back_to_interior_thickness(make_model):
    model = make_model(build_boundary_mesh_data())
    ssh = torch.tensor([1.0, 0.0, -3.0, -3.0], **F64)
    normal_velocity = torch.tensor([[1.0], [-1.0], [-1.0]], **F64)
    layer_thickness = torch.tensor([[3.0], [2.0], [0.5], [4.0]], **F64)
    flux = torch.zeros((3, 1), **F64)

    model.compute_layer_thick_edge_flux_upwind(ssh, normal_velocity, layer_thickness, flux)

    assert flux[2, 0].item() == pytest.approx(4.0)
