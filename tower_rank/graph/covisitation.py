"""Item co-visitation graph with distance-decayed, top-K pruned edges."""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from typing import Iterable, Sequence

import numpy as np

from tower_rank.config.defaults import DECAY_ALPHA, MAX_NEIGHBORS, WINDOW_CAP
from tower_rank.data.interactions import InteractionLog
from tower_rank.errors import ConfigurationError

log = logging.getLogger(__name__)


class CoVisitationGraph:
    """Weighted directed adjacency over item indices, stored as CSR arrays.

    Row ``a`` (``indices[indptr[a]:indptr[a+1]]``) lists the kept neighbours
    of item ``a`` by decreasing weight.  Immutable once built.
    """

    def __init__(self, num_items: int, indptr: np.ndarray, indices: np.ndarray, weights: np.ndarray):
        self.num_items = num_items
        self.indptr = indptr
        self.indices = indices
        self.weights = weights

    # -------------------------------------------------------------
    @classmethod
    def from_sequences(
        cls,
        sequences: Iterable[Sequence[int]],
        num_items: int,
        window_cap: int = WINDOW_CAP,
        decay_alpha: float = DECAY_ALPHA,
        max_neighbors: int = MAX_NEIGHBORS,
    ) -> "CoVisitationGraph":
        """Each ordered pair at positions ``i < j`` of a sequence (truncated
        to ``window_cap``) adds ``decay_alpha ** (j - i - 1)`` to both
        ``a -> b`` and ``b -> a``.  Pairs of the same item are ignored."""
        if num_items <= 0 or window_cap <= 0 or max_neighbors <= 0:
            raise ConfigurationError(
                f"graph sizes must be positive, got {num_items=} {window_cap=} {max_neighbors=}"
            )
        if not decay_alpha > 0:
            raise ConfigurationError(f"decay_alpha must be positive, got {decay_alpha}")

        decay = decay_alpha ** np.arange(window_cap, dtype=np.float64)
        acc: dict[int, dict[int, float]] = defaultdict(lambda: defaultdict(float))

        for seq in sequences:
            seq = [int(x) for x in list(seq)[:window_cap]]
            for x in seq:
                if not 0 <= x < num_items:
                    raise IndexError(f"item index {x} out of range [0, {num_items})")
            for i, a in enumerate(seq):
                for j in range(i + 1, len(seq)):
                    b = seq[j]
                    if a == b:
                        continue
                    w = decay[j - i - 1]
                    acc[a][b] += w
                    acc[b][a] += w

        indptr = np.zeros(num_items + 1, dtype=np.int64)
        idx_lst, w_lst = [], []
        for a in range(num_items):
            nbrs = acc.get(a)
            if nbrs:
                kept = heapq.nlargest(max_neighbors, nbrs.items(), key=lambda kv: (kv[1], -kv[0]))
                idx_lst.extend(b for b, _ in kept)
                w_lst.extend(w for _, w in kept)
            indptr[a + 1] = len(idx_lst)

        graph = cls(
            num_items,
            indptr,
            np.asarray(idx_lst, dtype=np.int64),
            np.asarray(w_lst, dtype=np.float64),
        )
        log.info("Co-visitation graph | %d items | %d edges", num_items, graph.num_edges)
        return graph

    @classmethod
    def build(
        cls,
        interactions: InteractionLog,
        window_cap: int = WINDOW_CAP,
        decay_alpha: float = DECAY_ALPHA,
        max_neighbors: int = MAX_NEIGHBORS,
    ) -> "CoVisitationGraph":
        return cls.from_sequences(
            interactions.sequences().values(),
            len(interactions.items),
            window_cap=window_cap,
            decay_alpha=decay_alpha,
            max_neighbors=max_neighbors,
        )

    # -------------------------------------------------------------
    @property
    def num_edges(self) -> int:
        return len(self.indices)

    def neighbors(self, node: int) -> dict[int, float]:
        lo, hi = self.indptr[node], self.indptr[node + 1]
        return dict(zip(self.indices[lo:hi].tolist(), self.weights[lo:hi].tolist()))

    def weight(self, a: int, b: int) -> float:
        return self.neighbors(a).get(b, 0.0)

    def out_degree(self) -> np.ndarray:
        """Sum of kept out-edge weights per node (0 for isolated nodes)."""
        return np.bincount(self.sources(), weights=self.weights, minlength=self.num_items)

    def sources(self) -> np.ndarray:
        """Source node of every stored edge, aligned with ``indices``."""
        return np.repeat(np.arange(self.num_items), np.diff(self.indptr))
