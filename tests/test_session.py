import pytest

from twotower.data.loaders import load_dataset
from twotower.data.store import load_interaction_store
from twotower.errors import IndexSpaceMismatchError, SessionBusyError
from twotower.models.two_tower import BilinearRetrievalModel, build_retrieval_model
from twotower.session import IDLE, TRAINING, Session


def test_session_rejects_model_from_another_load(toy_source, toy_store):
    dataset = load_dataset(toy_source)
    reloaded = load_interaction_store(dataset.interactions, dataset.items)
    model = build_retrieval_model(toy_store, embedding_dim=4)

    with pytest.raises(IndexSpaceMismatchError):
        Session(reloaded, model)


def test_session_rejects_mis_sized_tables(toy_store):
    model = BilinearRetrievalModel(
        num_users=toy_store.num_users,
        num_items=toy_store.num_items + 1,
        embedding_dim=4,
        index_generation=toy_store.generation,
    )

    with pytest.raises(IndexSpaceMismatchError):
        Session(toy_store, model)


def test_training_phase_guards_parameter_reads(toy_store):
    session = Session(toy_store, build_retrieval_model(toy_store, embedding_dim=4))
    assert session.phase == IDLE

    with session.training_phase():
        assert session.phase == TRAINING
        assert session.is_training
        with pytest.raises(SessionBusyError):
            session.ensure_idle()
        with pytest.raises(SessionBusyError):
            with session.training_phase():
                pass

    session.ensure_idle()


def test_training_phase_resets_after_error(toy_store):
    session = Session(toy_store, build_retrieval_model(toy_store, embedding_dim=4))

    with pytest.raises(RuntimeError):
        with session.training_phase():
            raise RuntimeError("boom")

    assert session.phase == IDLE
