import numpy as np
import pytest
import torch

from twotower.models.encoders import MLPConfig
from twotower.models.two_tower import (
    BilinearRetrievalModel,
    DeepRetrievalModel,
    build_retrieval_model,
)


def test_bilinear_scores_are_dot_products(toy_store):
    model = build_retrieval_model(toy_store, embedding_dim=4)
    users = torch.tensor([0, 1, 2])
    items = torch.tensor([3, 0, 1])

    with torch.no_grad():
        pairs = model.score_pairs(users, items)
        expected = (model.embed_users(users) * model.embed_items(items)).sum(dim=-1)
        matrix = model.score_matrix(users, torch.arange(4))

    assert isinstance(model, BilinearRetrievalModel)
    assert model.index_generation == toy_store.generation
    assert torch.allclose(pairs, expected)
    assert matrix.shape == (3, 4)
    assert torch.allclose(matrix[torch.arange(3), items], pairs)


def test_deep_model_matches_bilinear_when_fresh(toy_store):
    torch.manual_seed(1)
    model = build_retrieval_model(
        toy_store,
        embedding_dim=4,
        deep=True,
        use_user_aux_features=True,
        mlp=MLPConfig(hidden_dims=(8,)),
    )
    users = torch.tensor([0, 2])
    items = torch.tensor([1, 3])

    with torch.no_grad():
        deep_scores = model.score_pairs(users, items)
        dot = (model.embed_users(users) * model.embed_items(items)).sum(dim=-1)

    assert isinstance(model, DeepRetrievalModel)
    assert model.input_dim == 4 * 2 + 19 + 21
    assert torch.allclose(deep_scores, dot)


def test_deep_matrix_agrees_with_pair_scores(toy_store):
    torch.manual_seed(2)
    model = build_retrieval_model(toy_store, embedding_dim=4, deep=True)
    with torch.no_grad():
        # Move the MLP off its zero start so the residual contributes.
        for param in model.mlp.parameters():
            param.add_(0.1)
        users = torch.tensor([0, 1, 2])
        all_items = torch.arange(toy_store.num_items)
        matrix = model.score_matrix(users, all_items)
        pairs = model.score_pairs(users.repeat_interleave(4), all_items.repeat(3)).view(3, 4)

    assert torch.allclose(matrix, pairs, atol=1e-6)


def test_deep_model_without_features_uses_embeddings_only():
    model = DeepRetrievalModel(num_users=2, num_items=3, embedding_dim=5)

    assert model.input_dim == 10
    assert not model.use_item_genres
    assert not model.use_user_features


def test_deep_model_validates_feature_shapes():
    with pytest.raises(ValueError):
        DeepRetrievalModel(
            num_users=2, num_items=3, embedding_dim=4, item_genres=np.zeros((2, 19))
        )


def test_feature_buffers_are_not_trained(toy_store):
    model = build_retrieval_model(toy_store, embedding_dim=4, deep=True)

    trainable = {id(param) for param in model.trainable_parameters()}

    assert id(model.item_genres) not in trainable
    assert id(model.user_embedding.weight) in trainable
    assert any(id(param) in trainable for param in model.mlp.parameters())
