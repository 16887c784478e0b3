# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np
import numpy.ma as ma
import torch
from netCDF4 import Dataset

# MPAS mesh / subgrid variable names -> subgridwd field names
MPAS_VARIABLE_MAP: Dict[str, str] = {
    "nCells": "num_cells",
    "nEdges": "num_edges",
    "nVertices": "num_vertices",
    "vertexDegree": "vertex_degree",
    "nVertLevels": "num_vert_levels",
    "nSubgridTableLevels": "num_subgrid_table_levels",
    "indexToCellID": "cell_id",
    "cellsOnEdge": "cells_on_edge",
    "cellsOnVertex": "cells_on_vertex",
    "kiteAreasOnVertex": "kite_areas_on_vertex",
    "areaTriangle": "area_triangle",
    "fVertex": "f_vertex",
    "maxLevelVertexBot": "max_level_vertex_bot",
    "subgridWetVolumeCellTable": "subgrid_wet_volume_cell_table",
    "subgridWetVolumeEdgeTable": "subgrid_wet_volume_edge_table",
    "subgridWetVolumeVertexTable": "subgrid_wet_volume_vertex_table",
    "subgridWetFractionCellTable": "subgrid_wet_fraction_cell_table",
    "subgridWetFractionEdgeTable": "subgrid_wet_fraction_edge_table",
    "subgridWetFractionVertexTable": "subgrid_wet_fraction_vertex_table",
    "subgridSshCellTableRange": "subgrid_ssh_cell_table_range",
    "subgridSshEdgeTableRange": "subgrid_ssh_edge_table_range",
    "subgridSshVertexTableRange": "subgrid_ssh_vertex_table_range",
    "bottomDepth": "subgrid_cell_bathymetry_mean",
    "subgridCellBathymetryMin": "subgrid_cell_bathymetry_min",
    "subgridEdgeBathymetryMean": "subgrid_edge_bathymetry_mean",
    "subgridEdgeBathymetryMin": "subgrid_edge_bathymetry_min",
    "subgridVertexBathymetryMean": "subgrid_vertex_bathymetry_mean",
    "subgridVertexBathymetryMin": "subgrid_vertex_bathymetry_min",
    "layerThickness": "layer_thickness",
    "ssh": "ssh",
}


class InputProxy:
    """
    In-memory container of named arrays backed by NetCDF.

    Mesh dimensions found in the file are exposed as scalar entries so that
    dimension fields (``num_cells`` ...) are read the same way as tensors.
    """

    def __init__(
        self,
        data: Dict[str, Union[np.ndarray, torch.Tensor, float, int]],
        attrs: Optional[Dict[str, Any]] = None,
        dims: Optional[Dict[str, int]] = None,
    ):
        self.data = data
        self.attrs = attrs or {}
        self.dims = dims or {}

    @classmethod
    def from_nc(
        cls,
        file_path: Union[str, Path],
        rename: Optional[Mapping[str, str]] = MPAS_VARIABLE_MAP,
    ) -> InputProxy:
        """
        Read every variable, dimension and global attribute of a NetCDF file.

        Names listed in ``rename`` are translated; pass ``None`` to keep the
        names found in the file. Dimensions are also stored as integer data
        entries unless a variable of the same (translated) name exists.
        """
        rename = rename or {}
        data: Dict[str, Any] = {}
        attrs: Dict[str, Any] = {}
        dims: Dict[str, int] = {}

        try:
            with Dataset(file_path, "r") as ds:
                for attr_name in ds.ncattrs():
                    attrs[attr_name] = ds.getncattr(attr_name)

                for dim_name, dim in ds.dimensions.items():
                    dims[rename.get(dim_name, dim_name)] = dim.size

                for var_name, var in ds.variables.items():
                    v = var[:]
                    if ma.isMaskedArray(v):
                        if np.issubdtype(v.dtype, np.floating):
                            v = v.filled(np.nan)
                        else:
                            v = v.filled(-1)
                    data[rename.get(var_name, var_name)] = np.asarray(v)
        except OSError as e:
            raise RuntimeError(f"Error loading data from NetCDF {file_path}: {e}") from e

        for dim_name, size in dims.items():
            data.setdefault(dim_name, size)
        return cls(data, attrs, dims)

    def to_nc(
        self,
        file_path: Union[str, Path],
        variables: Optional[Sequence[str]] = None,
        output_complevel: int = 4,
    ) -> None:
        """
        Write stored arrays (all, or only ``variables``) to a NetCDF file.

        Each axis gets its own ``<name>_dim<axis>`` dimension; bools are
        written as ``u1``.
        """
        names = list(self.data.keys()) if variables is None else list(variables)
        with Dataset(file_path, "w") as ds:
            ds.setncatts(self.attrs)

            for name in names:
                value = self.data[name]
                if isinstance(value, torch.Tensor):
                    arr = value.detach().cpu().numpy()
                else:
                    arr = np.asarray(value)
                if arr.dtype == np.bool_:
                    arr = arr.astype("u1")

                axis_dims = []
                for ax, size in enumerate(arr.shape):
                    dim_name = f"{name}_dim{ax}"
                    if dim_name not in ds.dimensions:
                        ds.createDimension(dim_name, size)
                    axis_dims.append(dim_name)

                if axis_dims:
                    var = ds.createVariable(
                        name, arr.dtype, tuple(axis_dims),
                        zlib=(output_complevel > 0), complevel=output_complevel,
                    )
                    var[:] = arr
                else:
                    var = ds.createVariable(name, arr.dtype, ())
                    var.assignValue(arr)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.data
