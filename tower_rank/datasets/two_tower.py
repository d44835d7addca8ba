"""PyTorch dataset of dense (user, item) index pairs for Two-Tower."""

from __future__ import annotations

import numpy as np
import torch
from torch.utils.data import Dataset

from tower_rank.data.interactions import InteractionLog
from tower_rank.errors import DimensionMismatch


class InteractionPairDataset(Dataset):
    def __init__(self, users: np.ndarray, items: np.ndarray):
        if len(users) != len(items):
            raise DimensionMismatch(f"got {len(users)} users for {len(items)} items")
        self.u = torch.as_tensor(users, dtype=torch.long)
        self.i = torch.as_tensor(items, dtype=torch.long)

    @classmethod
    def from_log(cls, interactions: InteractionLog) -> "InteractionPairDataset":
        users, items, _ = interactions.index_pairs()
        return cls(users, items)

    def __len__(self):
        return len(self.u)

    def __getitem__(self, idx):
        return {"user": self.u[idx], "item": self.i[idx]}
