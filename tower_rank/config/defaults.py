"""Centralised project paths, defaults & the validated model config."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path

from tower_rank.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data" / "processed"
MLFLOW_EXPERIMENT = "tower_rank_experiments"

# ---------------------------------------------------------------------------
# Two-Tower
# ---------------------------------------------------------------------------
DEFAULT_EMB_DIM = 32
DEFAULT_HIDDEN_DIM = 64
DEFAULT_BATCH_SIZE = 256
DEFAULT_EPOCHS = 5
DEFAULT_LR = 1e-3
INIT_STD = 0.05
SCORING_CHUNK = 1024

FUSION_MODES = ("additive", "id_only")
LOSS_TYPES = ("softmax", "bpr")

# ---------------------------------------------------------------------------
# Co-visitation graph / Personalized PageRank
# ---------------------------------------------------------------------------
WINDOW_CAP = 200
DECAY_ALPHA = 0.75
MAX_NEIGHBORS = 64
DAMPING = 0.85
PPR_ITERATIONS = 30
CANDIDATE_POOL = 200
BLEND_WEIGHT = 0.15


@dataclass(frozen=True)
class TwoTowerConfig:
    num_users: int
    num_items: int
    emb_dim: int = DEFAULT_EMB_DIM
    feature_dim: int = 0
    hidden_dim: int = DEFAULT_HIDDEN_DIM
    fusion: str = "additive"
    loss_type: str = "softmax"
    lr: float = DEFAULT_LR
    negatives: int = 1
    batch_size: int = DEFAULT_BATCH_SIZE
    epochs: int = DEFAULT_EPOCHS
    seed: int | None = None

    def __post_init__(self):
        for name in ("num_users", "num_items", "emb_dim", "hidden_dim",
                     "negatives", "batch_size", "epochs"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive int, got {value!r}")
        if self.feature_dim < 0:
            raise ConfigurationError(f"feature_dim must be >= 0, got {self.feature_dim}")
        if self.fusion not in FUSION_MODES:
            raise ConfigurationError(f"Unknown fusion mode: {self.fusion!r}")
        if self.loss_type not in LOSS_TYPES:
            raise ConfigurationError(f"Unknown loss type: {self.loss_type!r}")
        if not self.lr > 0:
            raise ConfigurationError(f"lr must be positive, got {self.lr}")

    @property
    def uses_features(self) -> bool:
        return self.fusion == "additive" and self.feature_dim > 0

    def to_params(self) -> dict:
        """Flat dict suitable for ``mlflow.log_params``."""
        return {k: v for k, v in asdict(self).items() if v is not None}
