import math

import numpy as np
import pytest
import torch

from conftest import set_vectors
from tower_rank.config.defaults import TwoTowerConfig
from tower_rank.errors import ConfigurationError, DimensionMismatch
from tower_rank.models.embedding import EmbeddingTable
from tower_rank.models.feature_tower import FeatureTower
from tower_rank.models.losses import BPRLoss, InBatchSoftmaxLoss, UniformNegativeSampler
from tower_rank.models.scoring import score, score_all_pairs, score_batch
from tower_rank.models.two_tower import TwoTowerModel


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(num_users=0, num_items=4),
        dict(num_users=3, num_items=-1),
        dict(num_users=3, num_items=4, emb_dim=0),
        dict(num_users=3, num_items=4, loss_type="hinge"),
        dict(num_users=3, num_items=4, fusion="concat"),
        dict(num_users=3, num_items=4, negatives=0),
        dict(num_users=3, num_items=4, lr=0.0),
        dict(num_users=3, num_items=4, feature_dim=-2),
    ],
)
def test_config_rejects_invalid_values(kwargs):
    with pytest.raises(ConfigurationError):
        TwoTowerConfig(**kwargs)


def test_config_defaults():
    cfg = TwoTowerConfig(num_users=3, num_items=4)
    assert cfg.loss_type == "softmax"
    assert cfg.lr == pytest.approx(1e-3)
    assert cfg.batch_size == 256
    assert cfg.epochs == 5
    assert not cfg.uses_features
    assert "seed" not in cfg.to_params()


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        TwoTowerModel(num_users=0, num_items=3)


# ---------------------------------------------------------------------------
# Embedding table / feature tower
# ---------------------------------------------------------------------------


def test_lookup_gathers_rows(generator):
    table = EmbeddingTable(5, 3, generator=generator)
    out = table.lookup([4, 0, 4])
    assert out.shape == (3, 3)
    torch.testing.assert_close(out[0], table.weight[4])
    torch.testing.assert_close(out[0], out[2])


@pytest.mark.parametrize("bad", [[5], [-1], [0, 7]])
def test_lookup_out_of_range_raises_index_error(bad):
    table = EmbeddingTable(5, 3)
    with pytest.raises(IndexError):
        table.lookup(bad)


def test_feature_tower_zero_row_is_bias_only(generator):
    tower = FeatureTower(feature_dim=4, out_dim=3, hidden_dim=6, generator=generator)
    with torch.no_grad():
        tower.mlp[0].bias.normal_(generator=generator)
        tower.mlp[2].bias.normal_(generator=generator)
    out = tower(torch.zeros(2, 4))
    expected = tower.mlp[2](torch.relu(tower.mlp[0].bias))
    assert torch.isfinite(out).all()
    torch.testing.assert_close(out[0], expected)
    torch.testing.assert_close(out[1], expected)


def test_feature_tower_rejects_wrong_width():
    tower = FeatureTower(feature_dim=4, out_dim=3)
    with pytest.raises(DimensionMismatch):
        tower(torch.zeros(2, 5))


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def test_all_pairs_agrees_with_row_wise(generator):
    U = torch.randn(3, 5, generator=generator)
    I = torch.randn(4, 5, generator=generator)
    full = score_all_pairs(U, I)
    assert full.shape == (3, 4)
    for a in range(3):
        for b in range(4):
            torch.testing.assert_close(full[a, b], score_batch(U[a:a + 1], I[b:b + 1])[0])
            torch.testing.assert_close(full[a, b], score(U[a], I[b]))


def test_score_batch_is_row_wise_not_cross():
    U = torch.tensor([[1.0, 0.0], [0.0, 1.0]])
    I = torch.tensor([[2.0, 3.0], [5.0, 7.0]])
    torch.testing.assert_close(score_batch(U, I), torch.tensor([2.0, 7.0]))


def test_scoring_shape_mismatches():
    with pytest.raises(DimensionMismatch):
        score_batch(torch.zeros(2, 3), torch.zeros(3, 3))
    with pytest.raises(DimensionMismatch):
        score_all_pairs(torch.zeros(2, 3), torch.zeros(2, 4))
    with pytest.raises(DimensionMismatch):
        score(torch.zeros(3), torch.zeros(4))


# ---------------------------------------------------------------------------
# Two-Tower model
# ---------------------------------------------------------------------------


def test_additive_fusion_sums_id_and_feature_parts(generator):
    feats = np.eye(4, 3, dtype=np.float32)
    model = TwoTowerModel(2, 4, emb_dim=5, feature_dim=3, item_features=feats, generator=generator)
    idx = torch.tensor([0, 3])
    expected = model.item_emb(idx) + model.feature_tower(torch.as_tensor(feats)[idx])
    torch.testing.assert_close(model.item_vectors(idx), expected)
    assert model.item_vectors(idx).shape == (2, 5)


def test_id_only_ignores_features():
    model = TwoTowerModel(2, 4, emb_dim=5, feature_dim=3, fusion="id_only")
    assert model.feature_tower is None
    assert list(model.dense_parameters()) == []
    with pytest.raises(ConfigurationError):
        model.set_item_features(np.zeros((4, 3)))


def test_feature_tower_requires_a_feature_matrix():
    with pytest.raises(ConfigurationError):
        TwoTowerModel(2, 4, emb_dim=5, feature_dim=3)
    with pytest.raises(ConfigurationError):
        TwoTowerModel(2, 4, emb_dim=5, item_features=np.zeros((4, 3)))


def test_item_features_shape_is_checked():
    with pytest.raises(DimensionMismatch):
        TwoTowerModel(2, 4, emb_dim=5, feature_dim=3, item_features=np.zeros((4, 2)))
    model = TwoTowerModel(2, 4, emb_dim=5, feature_dim=3, item_features=np.zeros((4, 3)))
    with pytest.raises(DimensionMismatch):
        model.set_item_features(np.zeros((4, 2)))
    with pytest.raises(DimensionMismatch):
        model.set_item_features(np.zeros((3, 3)))


def test_forward_is_row_wise_score(generator):
    model = TwoTowerModel(3, 4, emb_dim=6, generator=generator)
    users, items = torch.tensor([0, 2]), torch.tensor([3, 1])
    expected = (model.user_vectors(users) * model.item_vectors(items)).sum(-1)
    torch.testing.assert_close(model(users, items), expected)


# ---------------------------------------------------------------------------
# Losses
# ---------------------------------------------------------------------------


def test_softmax_prefers_discriminative_embeddings():
    loss = InBatchSoftmaxLoss()
    users, items = torch.tensor([0, 1]), torch.tensor([0, 1])

    model = TwoTowerModel(2, 2, emb_dim=2)
    set_vectors(model, users=[[1, 0], [0, 1]], items=[[1, 0], [0, 1]])
    discriminative = loss(model, users, items).item()

    set_vectors(model, users=[[1, 0], [1, 0]], items=[[1, 0], [1, 0]])
    identical = loss(model, users, items).item()

    assert discriminative == pytest.approx(-math.log(math.e / (math.e + 1)), rel=1e-5)
    assert identical == pytest.approx(math.log(2), rel=1e-5)
    assert discriminative < identical


def test_softmax_single_pair_batch_is_zero():
    model = TwoTowerModel(1, 1, emb_dim=2)
    assert InBatchSoftmaxLoss()(model, torch.tensor([0]), torch.tensor([0])).item() == pytest.approx(0.0)


def test_bpr_matches_closed_form():
    model = TwoTowerModel(2, 3, emb_dim=2)
    set_vectors(model, users=[[1, 0], [0, 1]], items=[[2, 0], [0, 1], [1, 1]])
    fixed = lambda pos, k: torch.tensor([[1, 2], [0, 2]])
    loss = BPRLoss(num_items=3, negatives=2, sampler=fixed)

    value = loss(model, torch.tensor([0, 1]), torch.tensor([0, 1])).item()
    # s_pos = [2, 1]; s_neg = [[0, 1], [0, 1]]
    diffs = torch.tensor([[2.0, 1.0], [1.0, 0.0]])
    expected = -torch.nn.functional.logsigmoid(diffs).mean().item()
    assert value == pytest.approx(expected, rel=1e-6)


def test_bpr_rejects_badly_shaped_sampler():
    model = TwoTowerModel(2, 3, emb_dim=2)
    loss = BPRLoss(num_items=3, negatives=2, sampler=lambda pos, k: torch.zeros(len(pos), 1, dtype=torch.long))
    with pytest.raises(DimensionMismatch):
        loss(model, torch.tensor([0, 1]), torch.tensor([0, 1]))


def test_uniform_sampler_range_and_shape(generator):
    sampler = UniformNegativeSampler(7, generator)
    neg = sampler(torch.tensor([1, 2, 3]), 5)
    assert neg.shape == (3, 5)
    assert neg.dtype == torch.long
    assert int(neg.min()) >= 0 and int(neg.max()) < 7
