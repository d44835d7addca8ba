import pytest
import torch

from tower_rank.data.interactions import InteractionLog
from tower_rank.models.two_tower import TwoTowerModel

TINY_RECORDS = [
    ("alice", "w"), ("alice", "x"), ("alice", "w"), ("alice", "x"),
    ("bob", "y"), ("bob", "z"), ("bob", "y"),
    ("carol", "z"), ("carol", "x"), ("carol", "z"),
]


@pytest.fixture
def tiny_log() -> InteractionLog:
    return InteractionLog.from_records(TINY_RECORDS)


@pytest.fixture
def generator() -> torch.Generator:
    return torch.Generator().manual_seed(0)


def set_vectors(model: TwoTowerModel, users=None, items=None) -> None:
    with torch.no_grad():
        if users is not None:
            model.user_emb.weight.copy_(torch.tensor(users, dtype=torch.float32))
        if items is not None:
            model.item_emb.weight.copy_(torch.tensor(items, dtype=torch.float32))
