# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import numpy as np
import pytest
import torch
from netCDF4 import Dataset

from subgridwd.models.subgrid_model import SubgridWettingDrying
from subgridwd.params.input_proxy import MPAS_VARIABLE_MAP, InputProxy
from tests.conftest import build_mesh_data

MESH_DIMS = {
    "indexToCellID": ("nCells",),
    "cellsOnEdge": ("nEdges", "TWO"),
    "cellsOnVertex": ("nVertices", "vertexDegree"),
    "kiteAreasOnVertex": ("nVertices", "vertexDegree"),
    "areaTriangle": ("nVertices",),
    "fVertex": ("nVertices",),
    "bottomDepth": ("nCells",),
}
LOCATION_DIMS = {"Cell": "nCells", "Edge": "nEdges", "Vertex": "nVertices"}


def _dims_for(mpas_name):
    if mpas_name in MESH_DIMS:
        return MESH_DIMS[mpas_name]
    location = next(loc for loc in LOCATION_DIMS if loc in mpas_name)
    if mpas_name.endswith("Table"):
        return (LOCATION_DIMS[location], "nSubgridTableLevels")
    if mpas_name.endswith("Range"):
        return (LOCATION_DIMS[location], "TWO")
    return (LOCATION_DIMS[location],)


def write_mpas_file(path, data):
    with Dataset(path, "w") as ds:
        ds.setncattr("source", "unit test")
        ds.createDimension("nCells", data["num_cells"])
        ds.createDimension("nEdges", data["num_edges"])
        ds.createDimension("nVertices", data["num_vertices"])
        ds.createDimension("vertexDegree", data["vertex_degree"])
        ds.createDimension("nVertLevels", data["num_vert_levels"])
        ds.createDimension("nSubgridTableLevels", data["num_subgrid_table_levels"])
        ds.createDimension("TWO", 2)
        for mpas_name, field in MPAS_VARIABLE_MAP.items():
            value = data.get(field)
            if not isinstance(value, np.ndarray):
                continue
            var = ds.createVariable(mpas_name, value.dtype, _dims_for(mpas_name))
            var[:] = value


@pytest.fixture
def mpas_file(tmp_path):
    path = tmp_path / "mesh.nc"
    write_mpas_file(path, build_mesh_data())
    return path


def test_from_nc_translates_mpas_names(mpas_file):
    proxy = InputProxy.from_nc(mpas_file)
    assert proxy.attrs["source"] == "unit test"
    assert proxy.dims["num_cells"] == 4
    assert proxy["num_edges"] == 3
    assert proxy["num_subgrid_table_levels"] == 3
    assert "cellsOnEdge" not in proxy
    np.testing.assert_array_equal(proxy["cells_on_edge"], [[1, 2], [2, 3], [3, 4]])
    np.testing.assert_allclose(proxy["subgrid_cell_bathymetry_mean"], [2.0, 2.0, 2.0, 2.0])


def test_from_nc_keeps_names_without_rename(mpas_file):
    proxy = InputProxy.from_nc(mpas_file, rename=None)
    assert "cellsOnEdge" in proxy
    assert proxy["nCells"] == 4


def test_model_from_mpas_file(mpas_file):
    model = SubgridWettingDrying(input_proxy=InputProxy.from_nc(mpas_file), precision="float64")
    assert model.mesh.num_cells == 4
    thickness = model.layer_thickness_lookup(torch.tensor([0.0, 1.0, 3.0, -5.0]))
    torch.testing.assert_close(thickness, torch.tensor([2.0, 3.0, 5.0, 0.0], dtype=torch.float64))


def test_from_nc_missing_file(tmp_path):
    with pytest.raises(RuntimeError, match="Error loading data"):
        InputProxy.from_nc(tmp_path / "missing.nc")


def test_to_nc_writes_tensors_bools_and_scalars(tmp_path):
    path = tmp_path / "state.nc"
    proxy = InputProxy(
        {
            "ssh": torch.tensor([[0.5, -1.0, 2.0], [1.0, 1.5, 0.0]], dtype=torch.float64),
            "wet": np.array([True, False, True]),
            "time_step": 60.0,
        },
        attrs={"title": "state"},
    )
    proxy.to_nc(path)

    loaded = InputProxy.from_nc(path, rename=None)
    assert loaded.attrs["title"] == "state"
    np.testing.assert_allclose(loaded["ssh"], [[0.5, -1.0, 2.0], [1.0, 1.5, 0.0]])
    np.testing.assert_array_equal(loaded["wet"], [1, 0, 1])
    assert float(loaded["time_step"]) == 60.0
    assert loaded.dims["ssh_dim1"] == 3


def test_to_nc_subset(tmp_path):
    path = tmp_path / "subset.nc"
    proxy = InputProxy({"a": np.arange(3), "b": np.ones(2)})
    proxy.to_nc(path, variables=["b"], output_complevel=0)
    with Dataset(path) as ds:
        assert list(ds.variables) == ["b"]
