# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

from subgridwd.modules.log import LogModule
from subgridwd.modules.mesh import MeshModule
from subgridwd.modules.subgrid import SubgridModule

__all__ = [
    "LogModule",
    "MeshModule",
    "SubgridModule",
]
