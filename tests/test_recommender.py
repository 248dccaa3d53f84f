import numpy as np
import pytest
import torch

from twotower.data.loaders import load_dataset
from twotower.data.store import load_interaction_store
from twotower.errors import NoEligibleUserError, UnknownItemError, UnknownUserError
from twotower.models.two_tower import build_retrieval_model
from twotower.serving.recommender import RecommendationServer
from twotower.session import Session


def _server(store, *, seed: int = 0, chunk_size: int = 1024, deep: bool = False):
    torch.manual_seed(seed)
    model = build_retrieval_model(store, embedding_dim=8, deep=deep)
    return RecommendationServer(Session(store, model), chunk_size=chunk_size)


def test_recommend_excludes_rated_items_by_default(toy_store):
    server = _server(toy_store)
    user = toy_store.user_index.to_index(10)

    recs = server.recommend(user, k=4)

    assert {rec.item_index for rec in recs} == {2, 3}
    assert recs[0].score >= recs[1].score


@pytest.mark.parametrize("chunk_size", [1, 3, 1024])
def test_recommend_honours_explicit_exclusions(toy_store, chunk_size):
    server = _server(toy_store, chunk_size=chunk_size)

    recs = server.recommend(0, exclude_item_indices=[1, 3], k=2)

    assert len(recs) == 2
    assert {rec.item_index for rec in recs} == {0, 2}


def test_recommend_returns_exactly_k_when_enough_items(toy_store):
    server = _server(toy_store)

    assert len(server.recommend(1, exclude_item_indices=[], k=3)) == 3
    assert len(server.recommend(1, exclude_item_indices=[], k=10)) == 4
    assert server.recommend(1, k=0) == []


def test_equal_scores_break_ties_by_item_index(toy_store):
    server = _server(toy_store, chunk_size=3)
    with torch.no_grad():
        server.session.model.user_embedding.weight.zero_()

    recs = server.recommend(2, exclude_item_indices=[], k=4)

    assert [rec.item_index for rec in recs] == [0, 1, 2, 3]
    assert all(rec.score == 0.0 for rec in recs)


def test_chunked_scoring_matches_single_pass(toy_store):
    whole = _server(toy_store, seed=4, deep=True)
    chunked = _server(toy_store, seed=4, deep=True, chunk_size=1)
    for server in (whole, chunked):
        with torch.no_grad():
            for param in server.session.model.mlp.parameters():
                param.add_(0.05)

    expected = whole.recommend(0, exclude_item_indices=[], k=4)
    actual = chunked.recommend(0, exclude_item_indices=[], k=4)

    assert [rec.item_index for rec in actual] == [rec.item_index for rec in expected]
    assert [rec.score for rec in actual] == pytest.approx([rec.score for rec in expected])


def test_score_items_matches_recommend_scores(toy_store):
    server = _server(toy_store)
    recs = server.recommend(1, exclude_item_indices=[], k=4)

    scores = server.score_items(1, [rec.item_index for rec in recs])

    assert scores.dtype == np.float64
    assert scores.tolist() == pytest.approx([rec.score for rec in recs])
    assert server.score_items(1, []).shape == (0,)


def test_invalid_indices_are_rejected(toy_store):
    server = _server(toy_store)

    with pytest.raises(UnknownUserError):
        server.recommend(toy_store.num_users)
    with pytest.raises(UnknownItemError):
        server.recommend(0, exclude_item_indices=[toy_store.num_items])
    with pytest.raises(UnknownItemError):
        server.score_items(0, [-1])
    with pytest.raises(ValueError):
        server.recommend(0, k=-1)
    with pytest.raises(ValueError):
        RecommendationServer(server.session, chunk_size=0)


def test_reloading_identical_inputs_gives_identical_recommendations(toy_source):
    results = []
    for _ in range(2):
        dataset = load_dataset(toy_source)
        store = load_interaction_store(dataset.interactions, dataset.items)
        server = _server(store, seed=8)
        results.append([(rec.item_index, rec.score) for rec in server.recommend(0, k=4)])

    assert results[0] == results[1]


def test_historical_top_k(toy_store):
    server = _server(toy_store)
    user = toy_store.user_index.to_index(20)

    history = server.historical_top_k(user, k=5)

    assert [entry.rating for entry in history] == [5, 4]
    assert [toy_store.item_index.to_external(entry.item_index) for entry in history] == [3, 2]


def test_choose_test_user(toy_store):
    server = _server(toy_store)

    user = server.choose_test_user(2, np.random.default_rng(0))

    assert user in {0, 1, 2}
    with pytest.raises(NoEligibleUserError):
        server.choose_test_user(3)
