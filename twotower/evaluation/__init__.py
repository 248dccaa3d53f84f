"""Embedding diagnostics and projection."""

from .embeddings import (  # noqa: F401
    ItemProjection,
    PcaReducer,
    project_item_embeddings,
    summarize_embedding_norms,
)
