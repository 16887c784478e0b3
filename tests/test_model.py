# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

from datetime import datetime

import pytest
import torch

from tests.conftest import build_mesh_data

F64 = dict(dtype=torch.float64)


def test_model_opens_modules_in_dependency_order(model):
    assert model.opened_modules == ["mesh", "subgrid"]
    assert model.subgrid.mesh is model.mesh
    assert model.subgrid_flag
    assert not model.log_flag


@pytest.mark.parametrize("location, num", [("cell", 4), ("edge", 3), ("vertex", 2)])
def test_lookups_for_every_location(model, location, num):
    zeta = torch.linspace(-3.0, 3.0, num, **F64)
    thickness = model.layer_thickness_lookup(zeta, location=location)
    expected = torch.clamp(zeta + 2.0, min=0.0)
    torch.testing.assert_close(thickness, expected)

    fraction = model.wet_fraction_lookup(zeta, location=location)
    torch.testing.assert_close(fraction, torch.clamp((zeta + 2.0) / 4.0, 0.0, 1.0))

    recovered = model.ssh_lookup(thickness, location=location)
    torch.testing.assert_close(recovered, torch.clamp(zeta, min=-2.0))


def test_lookup_writes_into_provided_buffer(model):
    out = torch.full((4,), -1.0, **F64)
    result = model.layer_thickness_lookup(torch.tensor([0.0, 1.0, 3.0, -5.0], **F64), out=out)
    assert result is out
    torch.testing.assert_close(out, torch.tensor([2.0, 3.0, 5.0, 0.0], **F64))


def test_lookup_casts_inputs_to_model_precision(model):
    result = model.layer_thickness_lookup([0.0, 1.0, 3.0, -5.0])
    assert result.dtype == torch.float64
    torch.testing.assert_close(result, torch.tensor([2.0, 3.0, 5.0, 0.0], **F64))


def test_lookup_rejects_wrong_length(model):
    with pytest.raises(ValueError, match="Shape mismatch for zeta"):
        model.layer_thickness_lookup(torch.zeros(3, **F64), location="cell")


def test_edge_inverse_lookup_requires_bathymetry_min(make_model):
    data = build_mesh_data()
    del data["subgrid_edge_bathymetry_min"]
    model = make_model(data)
    assert model.subgrid.subgrid_edge_bathymetry_min is None
    with pytest.raises(ValueError, match="subgrid_edge_bathymetry_min"):
        model.ssh_lookup(torch.ones(3, **F64), location="edge")


def test_initialize_ssh_from_layer_thickness(model):
    layer_thickness = torch.tensor([[1.0], [2.0], [3.5], [6.0]], **F64)
    ssh = model.initialize_ssh_from_layer_thickness(layer_thickness)
    torch.testing.assert_close(ssh, torch.tensor([-1.0, 0.0, 1.5, 4.0], **F64))
    torch.testing.assert_close(model.subgrid.subgrid_layer_thickness_debug, layer_thickness[:, 0])


def test_initialize_dry_cells_sit_at_minus_bathymetry_min(model):
    ssh = model.initialize_ssh_from_layer_thickness(torch.zeros(4, **F64))
    torch.testing.assert_close(ssh, torch.full((4,), -2.0, **F64))
    torch.testing.assert_close(model.subgrid.subgrid_layer_thickness_debug, torch.zeros(4, **F64))


def test_disabled_flag_skips_subgrid_modules(make_model):
    model = make_model(
        build_mesh_data(num_vert_levels=3),
        use_subgrid_wetting_drying=False,
        opened_modules=["mesh", "subgrid", "log"],
    )
    assert model.opened_modules == ["mesh"]
    assert model.subgrid is None
    with pytest.raises(RuntimeError, match="not active"):
        model.layer_thickness_lookup(torch.zeros(4, **F64))
    with pytest.raises(RuntimeError, match="not active"):
        model.compute_vorticity(
            torch.zeros(4, **F64), torch.zeros((2, 3), **F64),
            torch.zeros((2, 3), **F64), torch.zeros((2, 3), **F64),
        )


def test_missing_required_table_is_reported(make_model):
    data = build_mesh_data()
    del data["subgrid_wet_volume_vertex_table"]
    with pytest.raises(RuntimeError, match="subgrid_wet_volume_vertex_table"):
        make_model(data)


def test_log_buffers_and_log_file(make_model):
    model = make_model(opened_modules=["mesh", "subgrid", "log"], log_buffer_size=4)
    ssh = torch.tensor([1.0, 0.0, -3.0, -3.0], **F64)
    flux = torch.zeros((3, 1), **F64)
    edge_mean = torch.full((3, 1), 9.0, **F64)

    model.compute_layer_thick_edge_flux_center(ssh, edge_mean, flux, current_step=1)
    model.compute_vorticity(
        ssh, torch.ones((2, 1), **F64), torch.zeros((2, 1), **F64), torch.zeros((2, 1), **F64),
        current_step=1,
    )

    log = model.log
    assert log.edge_fallback_count.tolist() == [0, 1, 0, 0]
    assert log.edge_flux_thickness_sum[1].item() == pytest.approx(2.5 + 0.5 + 9.0)
    assert log.vertex_skip_count.tolist() == [0, 1, 0, 0]
    assert log.vertex_thickness_sum[1].item() == pytest.approx(0.75)

    model.set_log_time(60.0, 2, datetime(2000, 1, 1))
    model.write_log()

    text = model.log_path.read_text()
    assert "EdgeFallback" in text and "VertexSkipped" in text
    rows = text.strip().splitlines()[-2:]
    assert rows[1].startswith("2000-01-01 00:01")
    assert rows[1].split()[2] == "1"
    assert log.edge_fallback_count.sum().item() == 0


def test_log_step_outside_buffer(make_model):
    model = make_model(opened_modules=["mesh", "subgrid", "log"], log_buffer_size=2)
    with pytest.raises(ValueError, match="outside the log buffer"):
        model.compute_layer_thick_edge_flux_center(
            torch.zeros(4, **F64), torch.zeros((3, 1), **F64), torch.zeros((3, 1), **F64), current_step=2,
        )


def test_save_state_round_trip(model, tmp_path):
    model.initialize_ssh_from_layer_thickness(torch.ones(4, **F64))
    path = tmp_path / "state.nc"
    proxy = model.save_state(path, fields=["subgrid_layer_thickness_debug", "cells_on_edge"])
    assert set(proxy.data) == {"subgrid_layer_thickness_debug", "cells_on_edge"}
    assert path.exists()
