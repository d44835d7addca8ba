import numpy as np
import pytest

from conftest import set_vectors
from tower_rank.data.interactions import IndexMapping, InteractionLog
from tower_rank.engine.evaluate import hit_rate_at_k, ndcg_at_k
from tower_rank.engine.projection import project_items_2d
from tower_rank.engine.scorer import CatalogScorer
from tower_rank.models.two_tower import TwoTowerModel


@pytest.fixture
def scorer():
    model = TwoTowerModel(2, 3, emb_dim=2)
    # u0 ranks a > b > c, u1 ranks c > b > a
    set_vectors(model, users=[[1, 0], [0, 1]], items=[[3, 0], [2, 2], [0, 3]])
    return CatalogScorer(model, IndexMapping.fit(["u0", "u1"]), IndexMapping.fit(["a", "b", "c"]))


def test_hit_rate_excludes_training_history(scorer):
    train = InteractionLog.from_records([("u0", "a"), ("u1", "c")])
    holdout = [("u0", "b"), ("u1", "a")]
    # u0: a is seen, b becomes top-1; u1: c seen, b > a so a misses at k=1
    assert hit_rate_at_k(scorer, holdout, train.items_seen_by, k=1) == pytest.approx(0.5)
    assert hit_rate_at_k(scorer, holdout, train.items_seen_by, k=2) == pytest.approx(1.0)


def test_unknown_users_count_as_misses(scorer):
    seen = lambda user: set()
    assert hit_rate_at_k(scorer, [("ghost", "a"), ("u0", "a")], seen, k=1) == pytest.approx(0.5)
    assert ndcg_at_k(scorer, [("ghost", "a"), ("u0", "a")], seen, k=1) == pytest.approx(0.5)


def test_ndcg_is_one_for_perfect_rankings(scorer):
    seen = lambda user: set()
    assert ndcg_at_k(scorer, [("u0", "a"), ("u1", "c")], seen, k=3) == pytest.approx(1.0)
    assert ndcg_at_k(scorer, [("u0", "c")], seen, k=3) == pytest.approx(0.5)


def test_empty_holdout(scorer):
    assert hit_rate_at_k(scorer, [], lambda u: set()) == 0.0
    assert ndcg_at_k(scorer, [], lambda u: set()) == 0.0


def test_projection_shape(generator):
    model = TwoTowerModel(2, 30, emb_dim=6, generator=generator)
    xy = project_items_2d(model, sample_n=20)
    assert xy.shape == (20, 2)
    assert np.isfinite(xy).all()
    assert project_items_2d(model, sample_n=500).shape == (30, 2)
    assert project_items_2d(TwoTowerModel(1, 1, emb_dim=3)).shape == (1, 2)


def test_ndcg_on_a_single_item_catalog():
    model = TwoTowerModel(2, 1, emb_dim=2)
    scorer = CatalogScorer(model, IndexMapping.fit(["u", "v"]), IndexMapping.fit(["a"]))
    seen = lambda user: set()
    assert ndcg_at_k(scorer, [("u", "a")], seen, k=1) == pytest.approx(1.0)
    assert ndcg_at_k(scorer, [("u", "a"), ("v", "zz")], seen, k=1) == pytest.approx(0.5)
