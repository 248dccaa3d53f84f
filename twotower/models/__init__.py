"""Model definitions for the two-tower architecture."""

from .encoders import MLPConfig, build_id_embedding, build_scoring_mlp  # noqa: F401
from .two_tower import (  # noqa: F401
    BilinearRetrievalModel,
    DeepRetrievalModel,
    RetrievalModel,
    build_retrieval_model,
)
