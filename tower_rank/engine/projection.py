"""2-D PCA projection of final item vectors (for plotting)."""

from __future__ import annotations

import numpy as np
import torch
from sklearn.decomposition import PCA

from tower_rank.models.two_tower import TwoTowerModel


@torch.no_grad()
def project_items_2d(model: TwoTowerModel, sample_n: int = 500) -> np.ndarray:
    n = min(sample_n, model.num_items)
    if n < 2:
        return np.zeros((max(n, 0), 2), dtype=np.float32)
    with model.lock:
        model.eval()
        idx = torch.arange(n, device=model.item_emb.weight.device)
        X = model.item_vectors(idx).cpu().numpy()

    comps = min(2, X.shape[1])
    proj = PCA(n_components=comps).fit_transform(X)
    if comps < 2:
        proj = np.hstack([proj, np.zeros((n, 2 - comps))])
    return proj.astype(np.float32)
