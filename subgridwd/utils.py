# LICENSE HEADER MANAGED BY add-license-header
# Copyright (c) 2025 Shengyu Kang (Wuhan University)
# Licensed under the Apache License, Version 2.0
# http://www.apache.org/licenses/LICENSE-2.0
#

import torch
from torch import distributed as dist


def get_global_rank():
    if dist.is_available() and dist.is_initialized():
        return dist.get_rank()
    else:
        return 0

def get_world_size():
    if dist.is_available() and dist.is_initialized():
        return dist.get_world_size()
    else:
        return 1


def find_indices_in_torch(a, b):
    """
    Returns the index position of each element of a in b (-1 if absent).
    The elements of b must be unique. Works for any shape of a.
    """
    sorted_b, order = torch.sort(b)
    flat_a = a.reshape(-1)
    pos = torch.bucketize(flat_a, sorted_b, right=False)
    valid_mask = pos < len(sorted_b)
    hit_mask = torch.zeros_like(flat_a, dtype=torch.bool)
    hit_mask[valid_mask] = (sorted_b[pos[valid_mask]] == flat_a[valid_mask])
    index = torch.full_like(pos, -1, dtype=torch.int64)
    index[hit_mask] = order[pos[hit_mask]]

    return index.reshape(a.shape)
