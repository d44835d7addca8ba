"""Held-out retrieval metrics (HitRate@K, NDCG@K)."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Iterable

import numpy as np
from sklearn.metrics import ndcg_score

from tower_rank.engine.scorer import CatalogScorer

log = logging.getLogger(__name__)

SeenFn = Callable[[object], set]


def _group(holdout: Iterable) -> dict:
    by_user = defaultdict(set)
    for user, item in holdout:
        by_user[user].add(item)
    return by_user


def hit_rate_at_k(scorer: CatalogScorer, holdout: Iterable, seen: SeenFn, k: int = 10) -> float:
    """Fraction of held-out users with at least one held-out item in their
    top-``k``, with ``seen(user)`` excluded from ranking."""
    by_user = _group(holdout)
    if not by_user:
        return 0.0
    hits = 0
    for user, targets in by_user.items():
        recs = scorer.recommend(user, exclude=seen(user) - targets, top_k=k)
        hits += any(r.item in targets for r in recs)
    return hits / len(by_user)


def ndcg_at_k(scorer: CatalogScorer, holdout: Iterable, seen: SeenFn, k: int = 10) -> float:
    by_user = _group(holdout)
    if not by_user:
        return 0.0
    total = 0.0
    for user, targets in by_user.items():
        u = scorer.users.index_of(user)
        rel_idx = [i for i in scorer.items.indices_of(targets) if i is not None]
        if u is None or not rel_idx:
            continue
        scores = scorer.score_all(u).astype(np.float64)
        if len(scores) < 2:
            # ndcg_score needs two documents; the lone item is the relevant one
            total += 1.0 if k >= 1 else 0.0
            continue
        excluded = [i for i in scorer.items.indices_of(seen(user) - targets) if i is not None]
        if excluded:
            scores[excluded] = scores.min() - 1.0
        y_true = np.zeros((1, len(scores)))
        y_true[0, rel_idx] = 1.0
        total += ndcg_score(y_true, scores[None, :], k=k)
    result = total / len(by_user)
    log.info("NDCG@%d %.4f over %d users", k, result, len(by_user))
    return result
