"""Data access, indexing, and feature construction utilities."""

from .features import build_item_genre_matrix, build_user_feature_matrix  # noqa: F401
from .indexers import IndexSpace, build_index_space  # noqa: F401
from .loaders import (  # noqa: F401
    DatasetArtifacts,
    DirectoryDataSource,
    InMemoryDataSource,
    load_dataset,
    parse_interactions,
    parse_items,
)
from .samplers import BatchSampler, LossBatch, sample_negative_items  # noqa: F401
from .store import InteractionStore, UserProfile, load_interaction_store  # noqa: F401
