"""Two-Tower retrieval model (ID embeddings + optional item feature tower)."""

from __future__ import annotations

import threading
from typing import Iterator, Sequence

import numpy as np
import torch
import torch.nn as nn

from tower_rank.config.defaults import DEFAULT_EMB_DIM, DEFAULT_HIDDEN_DIM, FUSION_MODES, TwoTowerConfig
from tower_rank.errors import ConfigurationError, DimensionMismatch
from tower_rank.models.embedding import EmbeddingTable
from tower_rank.models.feature_tower import FeatureTower
from tower_rank.models.scoring import score_batch


class TwoTowerModel(nn.Module):
    """User tower: id -> embedding.  Item tower: id -> embedding, plus the
    feature tower output when ``fusion="additive"`` and ``feature_dim > 0``.

    Fusion is an elementwise sum so the final item vector keeps width
    ``emb_dim`` and stays comparable with the user vector.
    """

    def __init__(
        self,
        num_users: int,
        num_items: int,
        emb_dim: int = DEFAULT_EMB_DIM,
        feature_dim: int = 0,
        hidden_dim: int = DEFAULT_HIDDEN_DIM,
        fusion: str = "additive",
        item_features: np.ndarray | torch.Tensor | None = None,
        generator: torch.Generator | None = None,
    ):
        if min(num_users, num_items, emb_dim, hidden_dim) <= 0:
            raise ConfigurationError(
                f"sizes must be positive, got {num_users=} {num_items=} {emb_dim=} {hidden_dim=}"
            )
        if fusion not in FUSION_MODES:
            raise ConfigurationError(f"Unknown fusion mode: {fusion!r}")
        if feature_dim < 0:
            raise ConfigurationError(f"feature_dim must be >= 0, got {feature_dim}")
        super().__init__()
        self.num_users = num_users
        self.num_items = num_items
        self.emb_dim = emb_dim
        self.feature_dim = feature_dim
        self.fusion = fusion

        self.user_emb = EmbeddingTable(num_users, emb_dim, generator=generator)
        self.item_emb = EmbeddingTable(num_items, emb_dim, generator=generator)

        self.feature_tower = None
        if fusion == "additive" and feature_dim > 0:
            self.feature_tower = FeatureTower(feature_dim, emb_dim, hidden_dim, generator=generator)
        self.register_buffer("item_features", None)

        # Serialises parameter mutation against readers (see engine.scorer).
        self.lock = threading.RLock()

        if self.feature_tower is not None:
            if item_features is None:
                raise ConfigurationError(
                    f"additive fusion with feature_dim={feature_dim} needs an item feature matrix"
                )
            self.set_item_features(item_features)
        elif item_features is not None:
            raise ConfigurationError("item features given but the model has no feature tower")

    @classmethod
    def from_config(cls, cfg: TwoTowerConfig, item_features=None, generator=None) -> "TwoTowerModel":
        return cls(
            num_users=cfg.num_users,
            num_items=cfg.num_items,
            emb_dim=cfg.emb_dim,
            feature_dim=cfg.feature_dim,
            hidden_dim=cfg.hidden_dim,
            fusion=cfg.fusion,
            item_features=item_features,
            generator=generator,
        )

    # ---------------------------------------------------------------------
    def set_item_features(self, features: np.ndarray | torch.Tensor) -> None:
        """Attach the read-only ``[num_items, feature_dim]`` feature matrix."""
        if self.feature_tower is None:
            raise ConfigurationError("item features given but the model has no feature tower")
        feats = torch.as_tensor(features, dtype=torch.float32, device=self.item_emb.weight.device)
        if tuple(feats.shape) != (self.num_items, self.feature_dim):
            raise DimensionMismatch(
                f"item features must be ({self.num_items}, {self.feature_dim}), got {tuple(feats.shape)}"
            )
        self.item_features = feats.clone()

    # ---------------------------------------------------------------------
    def user_vectors(self, users: torch.Tensor | Sequence[int]) -> torch.Tensor:
        return self.user_emb(users)  # (B, D)

    def item_vectors(self, items: torch.Tensor | Sequence[int]) -> torch.Tensor:
        v = self.item_emb(items)  # (B, D), bounds-checked
        if self.feature_tower is None:
            return v
        idx = torch.as_tensor(items, dtype=torch.long, device=self.item_features.device)
        return v + self.feature_tower(self.item_features[idx])

    def forward(self, users, items) -> torch.Tensor:
        return score_batch(self.user_vectors(users), self.item_vectors(items))

    # ---------------------------------------------------------------------
    def sparse_parameters(self) -> Iterator[nn.Parameter]:
        yield self.user_emb.weight
        yield self.item_emb.weight

    def dense_parameters(self) -> Iterator[nn.Parameter]:
        if self.feature_tower is not None:
            yield from self.feature_tower.parameters()
