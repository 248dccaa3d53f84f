import numpy as np
import pytest
import torch

from twotower.errors import SessionBusyError
from twotower.evaluation.embeddings import (
    PcaReducer,
    project_item_embeddings,
    summarize_embedding_norms,
)
from twotower.models.two_tower import build_retrieval_model
from twotower.session import Session


def test_pca_reducer_recovers_dominant_axis():
    direction = torch.tensor([3.0, 4.0, 0.0]) / 5.0
    weights = torch.linspace(-2, 2, steps=9).unsqueeze(1)
    matrix = weights * direction + 10.0

    coords = PcaReducer().reduce(matrix, target_dims=2)

    assert coords.shape == (9, 2)
    assert torch.allclose(coords[:, 0].abs(), weights.squeeze(1).abs(), atol=1e-4)
    assert torch.allclose(coords[:, 1], torch.zeros(9), atol=1e-4)


def test_pca_reducer_pads_when_rank_is_short():
    coords = PcaReducer().reduce(torch.tensor([[1.0], [2.0], [4.0]]), target_dims=2)

    assert coords.shape == (3, 2)
    assert torch.count_nonzero(coords[:, 1]) == 0


def test_project_item_embeddings_samples_and_labels(toy_store):
    session = Session(toy_store, build_retrieval_model(toy_store, embedding_dim=4))

    projection = project_item_embeddings(session, sample_size=3, seed=0)

    assert projection.coords.shape == (3, 2)
    assert len(set(projection.item_indices.tolist())) == 3
    assert projection.item_indices.tolist() == sorted(projection.item_indices.tolist())
    assert projection.titles[0] == toy_store.item_display_title(int(projection.item_indices[0]))

    everything = project_item_embeddings(session, sample_size=100)
    assert everything.item_indices.tolist() == [0, 1, 2, 3]


def test_project_item_embeddings_requires_idle_session(toy_store):
    session = Session(toy_store, build_retrieval_model(toy_store, embedding_dim=4))

    with session.training_phase():
        with pytest.raises(SessionBusyError):
            project_item_embeddings(session)
    with pytest.raises(ValueError):
        project_item_embeddings(session, sample_size=0)


def test_summarize_embedding_norms():
    stats = summarize_embedding_norms(torch.tensor([[3.0, 4.0], [0.0, 1.0]]), label="item")

    assert stats["count"] == 2
    assert stats["max"] == pytest.approx(5.0)
    assert stats["mean"] == pytest.approx(3.0)
    assert stats["median"] == pytest.approx(float(np.median([5.0, 1.0])))
