# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import pytest
from pydantic import ValidationError

from subgridwd.configs.template_config import SubgridConfig
from subgridwd.models.subgrid_model import SubgridWettingDrying
from subgridwd.params.input_proxy import InputProxy
from tests.conftest import build_mesh_data


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "mesh.nc"
    path.write_bytes(b"")
    return path


def test_from_toml(tmp_path, input_file):
    toml_path = tmp_path / "config.toml"
    toml_path.write_text(
        f'experiment_name = "wd_test"\n'
        f'input_file = "{input_file.as_posix()}"\n'
        f'output_dir = "{tmp_path.as_posix()}"\n'
        f'precision = "float64"\n'
        f'ocean_run_mode = "init"\n'
        f'block_size = 64\n'
    )
    config = SubgridConfig.from_toml(toml_path)
    assert config.experiment_name == "wd_test"
    assert config.ocean_run_mode == "init"
    assert config.opened_modules == ["mesh", "subgrid"]

    kwargs = config.model_kwargs()
    assert kwargs["BLOCK_SIZE"] == 64
    assert "block_size" not in kwargs

    model = SubgridWettingDrying(input_proxy=InputProxy(build_mesh_data(num_vert_levels=2)), **kwargs)
    assert model.ocean_run_mode == "init"
    assert model.output_full_dir == tmp_path / "wd_test"
    assert model.subgrid.ocean_run_mode == "init"


def test_config_requires_mesh(input_file):
    with pytest.raises(ValidationError, match="must include 'mesh'"):
        SubgridConfig(input_file=input_file, opened_modules=["subgrid"])


def test_config_requires_existing_input(tmp_path):
    with pytest.raises(ValidationError):
        SubgridConfig(input_file=tmp_path / "absent.nc")


def test_config_rejects_unknown_run_mode(input_file):
    with pytest.raises(ValidationError):
        SubgridConfig(input_file=input_file, ocean_run_mode="spinup")
