"""Blend Two-Tower retrieval scores with Personalized PageRank."""

from __future__ import annotations

import threading
from typing import Iterable, Mapping, Sequence

import numpy as np

from tower_rank.config.defaults import BLEND_WEIGHT, CANDIDATE_POOL, DAMPING, PPR_ITERATIONS
from tower_rank.engine.scorer import CatalogScorer, RankedCandidate
from tower_rank.errors import DimensionMismatch
from tower_rank.graph.covisitation import CoVisitationGraph
from tower_rank.graph.pagerank import personalized_pagerank


def blend_scores(
    candidates: Sequence[RankedCandidate],
    ppr: np.ndarray,
    weight: float = BLEND_WEIGHT,
) -> list[RankedCandidate]:
    """Add ``weight * ppr[index]`` to every candidate and re-sort."""
    if not candidates:
        return []
    idx = np.asarray([c.index for c in candidates], dtype=np.int64)
    blended = np.asarray([c.score for c in candidates], dtype=np.float64) + weight * ppr[idx]
    out = [
        RankedCandidate(c.item, s, c.index, c.metadata)
        for c, s in zip(candidates, blended.tolist())
    ]
    out.sort(key=lambda c: (-c.score, c.index))
    return out


def rerank_with_pagerank(
    scorer: CatalogScorer,
    graph: CoVisitationGraph,
    user_key,
    history: Iterable,
    candidate_pool: int = CANDIDATE_POOL,
    top_k: int = 10,
    weight: float = BLEND_WEIGHT,
    damping: float = DAMPING,
    iterations: int = PPR_ITERATIONS,
    metadata: Mapping | None = None,
    cancel: threading.Event | None = None,
) -> list[RankedCandidate]:
    """Retrieve ``candidate_pool`` unseen items, then re-rank them with
    PageRank mass seeded on the user's ``history``."""
    if graph.num_items != len(scorer.items):
        raise DimensionMismatch(
            f"graph covers {graph.num_items} items, catalog has {len(scorer.items)}"
        )
    history = set(history)
    candidates = scorer.recommend(user_key, exclude=history, top_k=candidate_pool, metadata=metadata)
    if not candidates:
        return []

    seeds = [i for i in scorer.items.indices_of(history) if i is not None]
    if not seeds:
        return candidates[:top_k]

    ppr = personalized_pagerank(graph, seeds, damping=damping, iterations=iterations, cancel=cancel)
    return blend_scores(candidates, ppr, weight)[:top_k]
