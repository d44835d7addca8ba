"""Dot-product scoring.

``score_batch`` pairs row *b* of ``U`` with row *b* of ``I`` only;
``score_all_pairs`` crosses every user row with every item row.  The
positive-pair term of BPR needs the former, in-batch softmax logits and
catalog scoring need the latter.
"""

from __future__ import annotations

import torch

from tower_rank.errors import DimensionMismatch


def score(u: torch.Tensor, i: torch.Tensor) -> torch.Tensor:
    # u, i: (D,) -> scalar
    if u.dim() != 1 or u.shape != i.shape:
        raise DimensionMismatch(f"score expects two (D,) vectors, got {tuple(u.shape)} and {tuple(i.shape)}")
    return torch.dot(u, i)


def score_batch(U: torch.Tensor, I: torch.Tensor) -> torch.Tensor:
    # U, I: (B, D) -> (B,)
    if U.dim() != 2 or U.shape != I.shape:
        raise DimensionMismatch(f"score_batch expects equal (B, D) inputs, got {tuple(U.shape)} and {tuple(I.shape)}")
    return torch.sum(U * I, dim=-1)


def score_all_pairs(U: torch.Tensor, I: torch.Tensor) -> torch.Tensor:
    # U: (Bu, D), I: (Bi, D) -> (Bu, Bi)
    if U.dim() != 2 or I.dim() != 2 or U.size(-1) != I.size(-1):
        raise DimensionMismatch(
            f"score_all_pairs expects (Bu, D) and (Bi, D), got {tuple(U.shape)} and {tuple(I.shape)}"
        )
    return U @ I.T
