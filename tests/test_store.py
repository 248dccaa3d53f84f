import numpy as np
import pandas as pd
import pytest

from twotower.data.loaders import load_dataset
from twotower.data.store import ProfileEntry, UserProfile, load_interaction_store
from twotower.errors import EmptyInputError, UnknownItemError, UnknownUserError


def _frames(toy_source):
    dataset = load_dataset(toy_source)
    return dataset.interactions, dataset.items


def test_store_builds_dense_indices(toy_store):
    assert toy_store.num_users == 3
    assert toy_store.num_items == 4
    assert toy_store.num_interactions == 6
    assert toy_store.user_index.index_to_id == (10, 20, 30)
    assert toy_store.items["item_idx"].tolist() == [0, 1, 2, 3]
    assert toy_store.item_genre_matrix.shape == (4, 19)
    assert toy_store.user_feature_matrix.shape == (3, 21)


def test_store_loading_is_deterministic(toy_source):
    interactions, items = _frames(toy_source)

    first = load_interaction_store(interactions, items, max_interactions=4, seed=3)
    second = load_interaction_store(interactions, items, max_interactions=4, seed=3)

    assert first.user_index == second.user_index
    assert first.item_index == second.item_index
    for user in range(first.num_users):
        assert first.user_profile(user).chronological() == second.user_profile(user).chronological()
    assert first.generation != second.generation


def test_truncation_keeps_a_sample_in_original_order(toy_source):
    interactions, items = _frames(toy_source)

    store = load_interaction_store(interactions, items, max_interactions=3, seed=0)

    assert store.num_interactions == 3
    kept = list(zip(store.interactions["user_id"], store.interactions["timestamp"]))
    original = list(zip(interactions["user_id"], interactions["timestamp"]))
    positions = [original.index(pair) for pair in kept]
    assert positions == sorted(positions)


def test_interactions_without_metadata_are_dropped(toy_source):
    interactions, items = _frames(toy_source)
    extra = pd.DataFrame(
        {"user_id": [40], "item_id": [99], "rating": [5], "timestamp": [1]}
    ).astype("int64")

    store = load_interaction_store(pd.concat([interactions, extra], ignore_index=True), items)

    assert store.dropped_interactions == 1
    assert 40 not in store.user_index
    assert 99 not in store.item_index


def test_store_without_usable_interactions_is_empty_input(toy_source):
    interactions, items = _frames(toy_source)
    orphaned = interactions.assign(item_id=interactions["item_id"] + 1000)

    with pytest.raises(EmptyInputError):
        load_interaction_store(orphaned, items)


def test_historical_ranking_orders_by_rating_then_recency():
    profile = UserProfile(
        user_index=0,
        entries=(
            ProfileEntry(item_index=5, rating=3, timestamp=100),
            ProfileEntry(item_index=7, rating=5, timestamp=50),
            ProfileEntry(item_index=9, rating=5, timestamp=90),
        ),
    )

    assert [entry.item_index for entry in profile.top_rated(3)] == [9, 7, 5]
    assert [entry.item_index for entry in profile.chronological()] == [7, 9, 5]
    assert profile.item_indices() == frozenset({5, 7, 9})


def test_profiles_and_lookups(toy_store):
    user = toy_store.user_index.to_index(10)

    assert toy_store.rated_items(user) == frozenset(
        toy_store.item_index.to_index(item) for item in (1, 2)
    )
    assert toy_store.item_title(0) == "Toy Story"
    assert toy_store.item_year(0) == 1995
    assert toy_store.item_year(3) is None
    assert toy_store.item_display_title(3) == "Untitled"
    assert toy_store.eligible_users(2) == [0, 1, 2]
    assert toy_store.eligible_users(3) == []
    assert np.array_equal(toy_store.interaction_counts(), [2, 2, 2])


def test_unknown_indices_are_rejected(toy_store):
    with pytest.raises(UnknownUserError):
        toy_store.user_profile(3)
    with pytest.raises(UnknownItemError):
        toy_store.item_title(-1)
