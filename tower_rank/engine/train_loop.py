"""Mini-batch contrastive training for Two-Tower retrieval."""
from __future__ import annotations

import logging
import threading
from typing import Callable

import mlflow
import torch
from torch.utils.data import DataLoader
from tqdm import tqdm

from tower_rank.config.defaults import DEFAULT_BATCH_SIZE, DEFAULT_EPOCHS, DEFAULT_LR, TwoTowerConfig
from tower_rank.data.interactions import InteractionLog
from tower_rank.datasets.two_tower import InteractionPairDataset
from tower_rank.engine.registry import create_loss, create_model
from tower_rank.errors import ConfigurationError, DimensionMismatch, NumericalInstability
from tower_rank.models.losses import ContrastiveLoss, NegativeSampler
from tower_rank.models.two_tower import TwoTowerModel

log = logging.getLogger(__name__)

ProgressSink = Callable[[int, int, float], None]


def _as_index(x, device) -> torch.Tensor:
    return torch.as_tensor(x, dtype=torch.long).to(device)


class ContrastiveTrainer:
    """Owns the optimizer state of one model for its whole lifetime.

    Embedding tables are stepped by ``SparseAdam`` (rows absent from a batch
    keep their values and moments), feature-tower weights by ``Adam``.
    """

    def __init__(
        self,
        model: TwoTowerModel,
        objective: ContrastiveLoss,
        lr: float = DEFAULT_LR,
        device: str | torch.device = "cuda" if torch.cuda.is_available() else "cpu",
        generator: torch.Generator | None = None,
    ):
        self.device = torch.device(device)
        self.model = model.to(self.device)
        self.objective = objective
        self.generator = generator

        self.optimizers: list[torch.optim.Optimizer] = [
            torch.optim.SparseAdam(list(model.sparse_parameters()), lr=lr)
        ]
        dense = list(model.dense_parameters())
        if dense:
            self.optimizers.append(torch.optim.Adam(dense, lr=lr))

    @classmethod
    def from_config(
        cls,
        cfg: TwoTowerConfig,
        item_features=None,
        sampler: NegativeSampler | None = None,
        device: str | torch.device | None = None,
    ) -> "ContrastiveTrainer":
        generator = None
        if cfg.seed is not None:
            generator = torch.Generator().manual_seed(cfg.seed)

        model = create_model(
            "two_tower",
            num_users=cfg.num_users,
            num_items=cfg.num_items,
            emb_dim=cfg.emb_dim,
            feature_dim=cfg.feature_dim,
            hidden_dim=cfg.hidden_dim,
            fusion=cfg.fusion,
            item_features=item_features,
            generator=generator,
        )
        loss_kwargs = {}
        if cfg.loss_type == "bpr":
            loss_kwargs = dict(num_items=cfg.num_items, negatives=cfg.negatives,
                               sampler=sampler, generator=generator)
        objective = create_loss(cfg.loss_type, **loss_kwargs)

        kwargs = {} if device is None else {"device": device}
        return cls(model, objective, lr=cfg.lr, generator=generator, **kwargs)

    # ---------------------------------------------------------------------
    def _batch(self, users, items) -> tuple[torch.Tensor, torch.Tensor]:
        users, items = _as_index(users, self.device), _as_index(items, self.device)
        if users.dim() != 1 or users.shape != items.shape:
            raise DimensionMismatch(
                f"users and items must be equal-length 1-D, got {tuple(users.shape)} and {tuple(items.shape)}"
            )
        return users, items

    def train_step(self, users, items) -> float:
        """Forward, loss, backward and one optimizer update; returns the loss."""
        users, items = self._batch(users, items)
        if users.numel() == 0:
            return 0.0

        with self.model.lock:
            self.model.train()
            for opt in self.optimizers:
                opt.zero_grad(set_to_none=True)
            loss = self.objective(self.model, users, items)
            if not torch.isfinite(loss):
                raise NumericalInstability(f"non-finite {self.objective.name} loss: {loss.item()}")
            loss.backward()
            for opt in self.optimizers:
                opt.step()
        return loss.detach().item()

    @torch.no_grad()
    def evaluate_loss(self, users, items) -> float:
        users, items = self._batch(users, items)
        if users.numel() == 0:
            return 0.0
        with self.model.lock:
            self.model.eval()
            loss = self.objective(self.model, users, items)
        if not torch.isfinite(loss):
            raise NumericalInstability(f"non-finite {self.objective.name} loss: {loss.item()}")
        return loss.item()

    # ---------------------------------------------------------------------
    def fit(
        self,
        data: InteractionLog | InteractionPairDataset,
        epochs: int = DEFAULT_EPOCHS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_step: ProgressSink | None = None,
        cancel: threading.Event | None = None,
        progress: bool = True,
    ) -> list[float]:
        """Run ``epochs`` shuffled passes; returns the mean loss of each
        completed epoch.  ``cancel`` is honoured between batches only."""
        for name, value in (("epochs", epochs), ("batch_size", batch_size)):
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive int, got {value!r}")
        ds = data if isinstance(data, InteractionPairDataset) else InteractionPairDataset.from_log(data)
        if len(ds) == 0:
            log.warning("No trainable interactions, skipping fit")
            return []

        dl = DataLoader(ds, batch_size=batch_size, shuffle=True, drop_last=False,
                        generator=self.generator)
        total_steps = len(dl) * epochs
        tracking = mlflow.active_run() is not None

        history, step = [], 0
        for ep in range(epochs):
            losses = []
            pbar = tqdm(dl, desc=f"Epoch {ep+1}/{epochs}", disable=not progress)
            for batch in pbar:
                if cancel is not None and cancel.is_set():
                    pbar.close()
                    log.info("Training cancelled after %d/%d steps", step, total_steps)
                    return history
                loss = self.train_step(batch["user"], batch["item"])
                step += 1
                losses.append(loss)
                pbar.set_postfix(loss=f"{loss:.4f}")
                if tracking:
                    mlflow.log_metric("batch_loss", loss, step=step)
                if on_step is not None:
                    on_step(step, total_steps, loss)

            history.append(sum(losses) / len(losses))
            if tracking:
                mlflow.log_metric("train_loss", history[-1], step=ep)
            log.info("Epoch %d/%d | loss %.4f", ep+1, epochs, history[-1])

        return history
