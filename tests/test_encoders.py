import pytest
import torch

from twotower.models.encoders import MLPConfig, build_id_embedding, build_scoring_mlp


def test_build_id_embedding_normal_init_is_small():
    torch.manual_seed(0)
    embedding = build_id_embedding(
        num_embeddings=200, embedding_dim=16, init={"type": "normal", "std": 0.05}
    )

    assert embedding.weight.shape == (200, 16)
    assert float(embedding.weight.std()) == pytest.approx(0.05, rel=0.1)


def test_build_id_embedding_uniform_bound():
    embedding = build_id_embedding(
        num_embeddings=10, embedding_dim=4, init={"type": "uniform", "bound": 0.01}
    )

    assert float(embedding.weight.abs().max()) <= 0.01


def test_build_id_embedding_rejects_bad_arguments():
    with pytest.raises(ValueError):
        build_id_embedding(num_embeddings=0, embedding_dim=4)
    with pytest.raises(ValueError):
        build_id_embedding(num_embeddings=3, embedding_dim=4, init={"type": "orthogonal"})


def test_scoring_mlp_starts_at_zero():
    mlp = build_scoring_mlp(MLPConfig(hidden_dims=(8, 4), activation="gelu"), input_dim=6)

    output = mlp(torch.randn(5, 6))

    assert output.shape == (5, 1)
    assert torch.count_nonzero(output) == 0


def test_scoring_mlp_rejects_unknown_activation():
    with pytest.raises(ValueError):
        build_scoring_mlp(MLPConfig(activation="swishy"), input_dim=4)
