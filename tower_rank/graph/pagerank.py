"""Personalized PageRank by fixed-count power iteration."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

import numpy as np

from tower_rank.config.defaults import DAMPING, PPR_ITERATIONS
from tower_rank.errors import ConfigurationError
from tower_rank.graph.covisitation import CoVisitationGraph

log = logging.getLogger(__name__)


def personalized_pagerank(
    graph: CoVisitationGraph,
    seeds: Iterable[int],
    damping: float = DAMPING,
    iterations: int = PPR_ITERATIONS,
    cancel: threading.Event | None = None,
) -> np.ndarray:
    """``p <- (1 - d) * p0 + d * W^T p`` for exactly ``iterations`` rounds.

    ``p0`` is uniform over the (deduplicated) seeds.  ``W`` is the graph with
    every row divided by its out-degree; a node without edges keeps degree 1
    and simply leaks the mass it receives.  Returns a ``(num_items,)``
    vector; with no seeds it is all zeros.
    """
    if not 0.0 <= damping <= 1.0:
        raise ConfigurationError(f"damping must be in [0, 1], got {damping}")
    if iterations < 0:
        raise ConfigurationError(f"iterations must be >= 0, got {iterations}")

    n = graph.num_items
    seeds = sorted({int(s) for s in seeds})
    for s in seeds:
        if not 0 <= s < n:
            raise IndexError(f"seed {s} out of range [0, {n})")

    p0 = np.zeros(n, dtype=np.float64)
    if not seeds:
        return p0
    p0[seeds] = 1.0 / len(seeds)

    deg = graph.out_degree()
    deg[deg == 0] = 1.0
    src = graph.sources()
    coef = graph.weights / deg[src]

    p = p0.copy()
    for t in range(iterations):
        if cancel is not None and cancel.is_set():
            log.info("PageRank cancelled after %d/%d iterations", t, iterations)
            break
        spread = np.bincount(graph.indices, weights=coef * p[src], minlength=n)
        p = (1.0 - damping) * p0 + damping * spread
    return p
