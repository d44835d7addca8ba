"""Full-catalog scoring and top-K recommendation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Hashable, Iterable, Mapping

import numpy as np
import torch

from tower_rank.config.defaults import SCORING_CHUNK
from tower_rank.data.interactions import IndexMapping
from tower_rank.errors import ConfigurationError, DimensionMismatch, NumericalInstability
from tower_rank.models.scoring import score_all_pairs
from tower_rank.models.two_tower import TwoTowerModel

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedCandidate:
    item: Hashable
    score: float
    index: int
    metadata: Any = None


def rank_indices(scores: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """Sort ``candidates`` by descending score, ties by ascending index."""
    order = np.lexsort((candidates, -scores[candidates]))
    return candidates[order]


class CatalogScorer:
    """Read-only view of a trained model for ranking items.

    The reverse item mapping is passed in explicitly; the scorer holds the
    model's lock while reading parameters so it never observes a half
    applied training step.
    """

    def __init__(
        self,
        model: TwoTowerModel,
        users: IndexMapping,
        items: IndexMapping,
        chunk_size: int = SCORING_CHUNK,
    ):
        if chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
        if len(users) != model.num_users or len(items) != model.num_items:
            raise DimensionMismatch(
                f"mappings ({len(users)} users, {len(items)} items) do not match the model "
                f"({model.num_users} users, {model.num_items} items)"
            )
        self.model = model
        self.users = users
        self.items = items
        self.chunk_size = chunk_size

    @torch.no_grad()
    def score_all(self, user_index: int) -> np.ndarray:
        """Scores of one user against every item, ``(num_items,)``."""
        n = self.model.num_items
        out = np.empty(n, dtype=np.float32)
        with self.model.lock:
            self.model.eval()
            device = self.model.item_emb.weight.device
            u = self.model.user_vectors([user_index])  # (1, D)
            for start in range(0, n, self.chunk_size):
                idx = torch.arange(start, min(start + self.chunk_size, n), device=device)
                s = score_all_pairs(u, self.model.item_vectors(idx))  # (1, c)
                out[start:start + len(idx)] = s[0].cpu().numpy()
        if not np.isfinite(out).all():
            raise NumericalInstability(f"non-finite catalog scores for user index {user_index}")
        return out

    def recommend(
        self,
        user_key,
        exclude: Iterable = (),
        top_k: int = 10,
        metadata: Mapping | None = None,
    ) -> list[RankedCandidate]:
        u = self.users.index_of(user_key)
        if u is None:
            log.debug("Unknown user %r, no recommendations", user_key)
            return []
        if top_k <= 0:
            return []

        scores = self.score_all(u)
        keep = np.ones(len(scores), dtype=bool)
        excluded = [i for i in self.items.indices_of(exclude) if i is not None]
        keep[excluded] = False

        top = rank_indices(scores, np.flatnonzero(keep))[:top_k]
        out = []
        for i in top.tolist():
            key = self.items.key_of(i)
            meta = metadata.get(key) if metadata is not None else None
            out.append(RankedCandidate(key, float(scores[i]), i, meta))
        return out
