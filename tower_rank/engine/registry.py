"""Simple factories so CLI scripts stay tiny."""
from tower_rank.errors import ConfigurationError
from tower_rank.models.losses import BPRLoss, InBatchSoftmaxLoss
from tower_rank.models.two_tower import TwoTowerModel


def create_model(name: str, **kwargs):
    name = name.lower()
    if name == "two_tower":
        return TwoTowerModel(**kwargs)
    raise ConfigurationError(f"Unknown model: {name}")


def create_loss(name: str, **kwargs):
    name = name.lower()
    if name == "softmax":
        return InBatchSoftmaxLoss()
    if name == "bpr":
        return BPRLoss(**kwargs)
    raise ConfigurationError(f"Unknown loss: {name}")
