# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

"""
Bind the subgrid tables of a mesh file and derive the initial ssh from the
initial layer thickness stored in the same file.

    python scripts/run_subgrid_init.py config.toml
"""

import argparse

import torch

from subgridwd.configs.template_config import SubgridConfig
from subgridwd.models.subgrid_model import SubgridWettingDrying
from subgridwd.params.input_proxy import InputProxy
from subgridwd.utils import get_global_rank, get_world_size


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("config", help="TOML configuration file")
    args = parser.parse_args()

    config = SubgridConfig.from_toml(args.config)
    rank = get_global_rank()
    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")

    input_proxy = InputProxy.from_nc(config.input_file)
    if "layer_thickness" not in input_proxy:
        raise KeyError(f"{config.input_file} has no layerThickness / layer_thickness variable")

    model = SubgridWettingDrying(
        input_proxy=input_proxy,
        rank=rank,
        world_size=get_world_size(),
        device=device,
        **config.model_kwargs(),
    )

    layer_thickness = input_proxy["layer_thickness"]
    if layer_thickness.ndim == 3:
        # (Time, nCells, nVertLevels): first record
        layer_thickness = layer_thickness[0]
    ssh = model.initialize_ssh_from_layer_thickness(layer_thickness)

    output_file = model.output_full_dir / "subgrid_init.nc"
    state = model.save_state(fields=["subgrid_layer_thickness_debug"])
    state["ssh"] = ssh.detach().cpu()
    output_file.parent.mkdir(parents=True, exist_ok=True)
    state.to_nc(output_file)
    print(f"[rank {rank}]: Wrote initial ssh to {output_file}")


if __name__ == "__main__":
    main()
