# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import os

os.environ["SUBGRIDWD_BACKEND"] = "torch"

import numpy as np
import pytest

from subgridwd.params.input_proxy import InputProxy

# Every table encodes thickness = zeta + 2 on [-2, 2]
LINEAR_TABLE = [0.0, 2.0, 4.0]
LINEAR_FRACTION = [0.0, 0.5, 1.0]
TABLE_RANGE = [-2.0, 2.0]
BATHYMETRY = 2.0


def _tables(num_elements, num_levels=3):
    table = np.tile(np.array(LINEAR_TABLE), (num_elements, 1))
    fraction = np.tile(np.array(LINEAR_FRACTION), (num_elements, 1))
    table_range = np.tile(np.array(TABLE_RANGE), (num_elements, 1))
    assert table.shape[1] == num_levels
    return table, fraction, table_range


def build_mesh_data(num_vert_levels=1):
    """
    Four cells in a strip, three edges between neighbours and two vertices.

        cell IDs        1   2   3   4
        edges            (1,2) (2,3) (3,4)
        vertices        (1,2,3) and (2,3,4)
    """
    num_cells, num_edges, num_vertices = 4, 3, 2
    data = {
        "num_cells": num_cells,
        "num_edges": num_edges,
        "num_vertices": num_vertices,
        "vertex_degree": 3,
        "num_vert_levels": num_vert_levels,
        "num_subgrid_table_levels": 3,
        "cell_id": np.array([1, 2, 3, 4], dtype=np.int32),
        "cells_on_edge": np.array([[1, 2], [2, 3], [3, 4]], dtype=np.int32),
        "cells_on_vertex": np.array([[1, 2, 3], [2, 3, 4]], dtype=np.int32),
        "kite_areas_on_vertex": np.array([[1.0, 1.0, 2.0], [1.0, 2.0, 1.0]]),
        "area_triangle": np.array([4.0, 4.0]),
        "f_vertex": np.array([1.5, 2.0]),
    }
    for location, count in (("cell", num_cells), ("edge", num_edges), ("vertex", num_vertices)):
        table, fraction, table_range = _tables(count)
        data[f"subgrid_wet_volume_{location}_table"] = table
        data[f"subgrid_wet_fraction_{location}_table"] = fraction
        data[f"subgrid_ssh_{location}_table_range"] = table_range
        data[f"subgrid_{location}_bathymetry_mean"] = np.full(count, BATHYMETRY)
        data[f"subgrid_{location}_bathymetry_min"] = np.full(count, BATHYMETRY)
    return data


@pytest.fixture
def mesh_data():
    return build_mesh_data()


@pytest.fixture
def input_proxy(mesh_data):
    return InputProxy(mesh_data)


@pytest.fixture
def make_model(tmp_path):
    from subgridwd.models.subgrid_model import SubgridWettingDrying

    def _make(data=None, **kwargs):
        kwargs.setdefault("precision", "float64")
        kwargs.setdefault("output_dir", tmp_path)
        proxy = InputProxy(build_mesh_data() if data is None else data)
        return SubgridWettingDrying(input_proxy=proxy, **kwargs)

    return _make


@pytest.fixture
def model(make_model):
    return make_model()


def build_boundary_mesh_data():
    """
    The strip of ``build_mesh_data`` cut open: cell 4 has an edge and
    vertex 1 a slot facing outside the domain (cell ID 0). The outside kite
    area is deliberately nonzero to show it is ignored.
    """
    data = build_mesh_data()
    data["cells_on_edge"] = np.array([[1, 2], [2, 3], [4, 0]], dtype=np.int32)
    data["cells_on_vertex"] = np.array([[1, 2, 0], [2, 3, 4]], dtype=np.int32)
    data["kite_areas_on_vertex"] = np.array([[2.0, 2.0, 5.0], [1.0, 2.0, 1.0]])
    return data
