"""Feature tower: item tags (multi-hot) -> embedding space."""

from __future__ import annotations

import torch
import torch.nn as nn

from tower_rank.config.defaults import DEFAULT_HIDDEN_DIM, INIT_STD
from tower_rank.errors import ConfigurationError, DimensionMismatch


def _normal_init(m: nn.Module, generator: torch.Generator | None = None) -> None:
    if isinstance(m, nn.Linear):
        with torch.no_grad():
            m.weight.normal_(0.0, INIT_STD, generator=generator)
            if m.bias is not None:
                m.bias.zero_()


class FeatureTower(nn.Module):
    """affine -> ReLU -> affine.

    Biases start at zero, so an all-zero feature row maps to the (learned)
    output bias rather than to anything undefined.
    """

    def __init__(
        self,
        feature_dim: int,
        out_dim: int,
        hidden_dim: int = DEFAULT_HIDDEN_DIM,
        generator: torch.Generator | None = None,
    ):
        if feature_dim <= 0 or out_dim <= 0 or hidden_dim <= 0:
            raise ConfigurationError(
                f"FeatureTower needs positive sizes, got {feature_dim=} {hidden_dim=} {out_dim=}"
            )
        super().__init__()
        self.feature_dim = feature_dim
        self.out_dim = out_dim
        self.mlp = nn.Sequential(
            nn.Linear(feature_dim, hidden_dim),
            nn.ReLU(),
            nn.Linear(hidden_dim, out_dim),
        )
        for m in self.mlp:
            _normal_init(m, generator)

    def forward(self, features: torch.Tensor) -> torch.Tensor:
        # features: (B, F)
        if features.dim() != 2 or features.size(-1) != self.feature_dim:
            raise DimensionMismatch(
                f"expected feature rows of width {self.feature_dim}, got shape {tuple(features.shape)}"
            )
        return self.mlp(features)  # (B, D)
