# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

from subgridwd.params.input_proxy import MPAS_VARIABLE_MAP, InputProxy

__all__ = [
    "InputProxy",
    "MPAS_VARIABLE_MAP",
]
