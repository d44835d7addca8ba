"""Contrastive objectives for Two-Tower training.

Each objective is a callable ``(model, users, items) -> scalar loss`` over a
batch of positive ``(user, item)`` index pairs, so the trainer never
branches on the loss type.
"""

from __future__ import annotations

from typing import Callable

import torch
import torch.nn.functional as F

from tower_rank.errors import ConfigurationError, DimensionMismatch
from tower_rank.models.scoring import score_all_pairs, score_batch

NegativeSampler = Callable[[torch.Tensor, int], torch.Tensor]


class UniformNegativeSampler:
    """Draws ``k`` items per positive uniformly from ``[0, num_items)``.

    The positive itself is not excluded; an occasional false negative is
    accepted noise.
    """

    def __init__(self, num_items: int, generator: torch.Generator | None = None):
        if num_items <= 0:
            raise ConfigurationError(f"num_items must be positive, got {num_items}")
        self.num_items = num_items
        self.generator = generator

    def __call__(self, pos_items: torch.Tensor, k: int) -> torch.Tensor:
        neg = torch.randint(0, self.num_items, (pos_items.size(0), k), generator=self.generator)
        return neg.to(pos_items.device)


class ContrastiveLoss:
    name = "base"

    def __call__(self, model, users: torch.Tensor, items: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError


class InBatchSoftmaxLoss(ContrastiveLoss):
    """Row b of the (B, B) logit matrix is classified against its diagonal;
    the other items of the batch act as negatives."""

    name = "softmax"

    def __call__(self, model, users, items):
        U = model.user_vectors(users)  # (B, D)
        I = model.item_vectors(items)  # (B, D)
        logits = score_all_pairs(U, I)  # (B, B)
        labels = torch.arange(logits.size(0), device=logits.device)
        return F.cross_entropy(logits, labels)


class BPRLoss(ContrastiveLoss):
    """-mean log sigma(s_pos - s_neg) over the batch and K negative slots."""

    name = "bpr"

    def __init__(
        self,
        num_items: int,
        negatives: int = 1,
        sampler: NegativeSampler | None = None,
        generator: torch.Generator | None = None,
    ):
        if negatives <= 0:
            raise ConfigurationError(f"negatives must be positive, got {negatives}")
        self.negatives = negatives
        self.sampler = sampler or UniformNegativeSampler(num_items, generator)

    def __call__(self, model, users, items):
        users = torch.as_tensor(users, dtype=torch.long)
        items = torch.as_tensor(items, dtype=torch.long)
        B, K = items.size(0), self.negatives

        U = model.user_vectors(users)  # (B, D)
        s_pos = score_batch(U, model.item_vectors(items))  # (B,)

        neg_idx = self.sampler(items, K)
        if tuple(neg_idx.shape) != (B, K):
            raise DimensionMismatch(f"negative sampler returned {tuple(neg_idx.shape)}, expected {(B, K)}")
        I_neg = model.item_vectors(neg_idx.reshape(-1))  # (B*K, D)
        U_rep = U.repeat_interleave(K, dim=0)  # (B*K, D)
        s_neg = score_batch(U_rep, I_neg).view(B, K)

        return -F.logsigmoid(s_pos.unsqueeze(1) - s_neg).mean()
