"""Dense, row-sparse-updated lookup table shared by both towers."""

from __future__ import annotations

from typing import Sequence

import torch
import torch.nn as nn

from tower_rank.config.defaults import INIT_STD
from tower_rank.errors import ConfigurationError


class EmbeddingTable(nn.Module):
    """``[cardinality, dim]`` table whose rows receive sparse gradients.

    Only the rows gathered by a forward pass get a gradient, so an optimizer
    built for sparse gradients (``torch.optim.SparseAdam``) leaves every
    other row bit-for-bit untouched by the step.
    """

    def __init__(
        self,
        cardinality: int,
        dim: int,
        std: float = INIT_STD,
        generator: torch.Generator | None = None,
    ):
        if cardinality <= 0 or dim <= 0:
            raise ConfigurationError(
                f"EmbeddingTable needs positive sizes, got cardinality={cardinality} dim={dim}"
            )
        super().__init__()
        self.cardinality = cardinality
        self.dim = dim
        self.table = nn.Embedding(cardinality, dim, sparse=True)
        with torch.no_grad():
            self.table.weight.normal_(0.0, std, generator=generator)

    @property
    def weight(self) -> torch.Tensor:
        return self.table.weight

    def forward(self, indices: torch.Tensor | Sequence[int]) -> torch.Tensor:
        idx = torch.as_tensor(indices, dtype=torch.long, device=self.table.weight.device)
        if idx.numel() and (idx.min() < 0 or idx.max() >= self.cardinality):
            raise IndexError(
                f"index out of range [0, {self.cardinality}): "
                f"min={idx.min().item()} max={idx.max().item()}"
            )
        return self.table(idx)

    lookup = forward
