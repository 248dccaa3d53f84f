"""
Two-tower retrieval models.

Both variants expose the same contract: ``embed_users``, ``embed_items``,
``trainable_parameters`` and the ``score_pairs`` / ``score_matrix`` scoring
functions used by the losses and the recommendation server. The deep variant
adds an MLP residual on top of the bilinear dot product.
"""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np
import torch
from torch import nn

from .encoders import MLPConfig, build_id_embedding, build_scoring_mlp


class RetrievalModel(nn.Module):
    """
    Bilinear two-tower base: one embedding table per tower, dot-product score.

    ``index_generation`` records which store build the tables were sized for.
    """

    variant = "bilinear"

    def __init__(
        self,
        *,
        num_users: int,
        num_items: int,
        embedding_dim: int,
        init: Mapping[str, Any] | None = None,
        index_generation: str | None = None,
    ) -> None:
        super().__init__()
        self.num_users = int(num_users)
        self.num_items = int(num_items)
        self.embedding_dim = int(embedding_dim)
        self.index_generation = index_generation
        self.user_embedding = build_id_embedding(
            num_embeddings=self.num_users, embedding_dim=self.embedding_dim, init=init
        )
        self.item_embedding = build_id_embedding(
            num_embeddings=self.num_items, embedding_dim=self.embedding_dim, init=init
        )

    def embed_users(self, indices: torch.Tensor) -> torch.Tensor:
        return self.user_embedding(indices)

    def embed_items(self, indices: torch.Tensor) -> torch.Tensor:
        return self.item_embedding(indices)

    def trainable_parameters(self) -> list[nn.Parameter]:
        return [param for param in self.parameters() if param.requires_grad]

    def score_pairs(self, users: torch.Tensor, items: torch.Tensor) -> torch.Tensor:
        """Score aligned (user, item) pairs; returns shape ``(N,)``."""
        user_emb = self.embed_users(users)
        item_emb = self.embed_items(items)
        scores = (user_emb * item_emb).sum(dim=-1)
        residual = self._pair_residual(users, user_emb, items, item_emb)
        return scores if residual is None else scores + residual

    def score_matrix(
        self,
        users: torch.Tensor,
        items: torch.Tensor,
        *,
        user_emb: torch.Tensor | None = None,
    ) -> torch.Tensor:
        """
        Score every user against every item; returns shape ``(B, M)``.

        ``user_emb`` may carry precomputed user embeddings so chunked scoring
        looks the users up only once.
        """
        if user_emb is None:
            user_emb = self.embed_users(users)
        item_emb = self.embed_items(items)
        scores = user_emb @ item_emb.T
        residual = self._matrix_residual(users, user_emb, items, item_emb)
        return scores if residual is None else scores + residual

    def forward(self, users: torch.Tensor, items: torch.Tensor) -> torch.Tensor:
        return self.score_pairs(users, items)

    def _pair_residual(
        self,
        users: torch.Tensor,
        user_emb: torch.Tensor,
        items: torch.Tensor,
        item_emb: torch.Tensor,
    ) -> torch.Tensor | None:
        return None

    def _matrix_residual(
        self,
        users: torch.Tensor,
        user_emb: torch.Tensor,
        items: torch.Tensor,
        item_emb: torch.Tensor,
    ) -> torch.Tensor | None:
        return None


class BilinearRetrievalModel(RetrievalModel):
    """Classic two-tower model scored by the embedding dot product."""


class DeepRetrievalModel(RetrievalModel):
    """
    Two-tower model whose score is ``u·i + mlp([u, i, genres_i?, aux_u?])``.

    Feature matrices are stored as non-trainable buffers aligned with the dense
    indices; only the embeddings and MLP weights are optimised.
    """

    variant = "deep"

    def __init__(
        self,
        *,
        num_users: int,
        num_items: int,
        embedding_dim: int,
        item_genres: np.ndarray | torch.Tensor | None = None,
        user_features: np.ndarray | torch.Tensor | None = None,
        mlp: MLPConfig | None = None,
        init: Mapping[str, Any] | None = None,
        index_generation: str | None = None,
    ) -> None:
        super().__init__(
            num_users=num_users,
            num_items=num_items,
            embedding_dim=embedding_dim,
            init=init,
            index_generation=index_generation,
        )
        self.use_item_genres = item_genres is not None
        self.use_user_features = user_features is not None

        input_dim = 2 * self.embedding_dim
        if item_genres is not None:
            genres = torch.as_tensor(np.asarray(item_genres), dtype=torch.float32)
            if genres.ndim != 2 or genres.shape[0] != self.num_items:
                raise ValueError(
                    f"item_genres must have shape ({self.num_items}, G), got {tuple(genres.shape)}"
                )
            self.register_buffer("item_genres", genres)
            input_dim += genres.shape[1]
        if user_features is not None:
            features = torch.as_tensor(np.asarray(user_features), dtype=torch.float32)
            if features.ndim != 2 or features.shape[0] != self.num_users:
                raise ValueError(
                    f"user_features must have shape ({self.num_users}, A), got {tuple(features.shape)}"
                )
            self.register_buffer("user_features", features)
            input_dim += features.shape[1]

        self.input_dim = input_dim
        self.mlp = build_scoring_mlp(mlp, input_dim=input_dim)

    def _pair_residual(self, users, user_emb, items, item_emb):
        parts = [user_emb, item_emb]
        if self.use_item_genres:
            parts.append(self.item_genres[items])
        if self.use_user_features:
            parts.append(self.user_features[users])
        return self.mlp(torch.cat(parts, dim=-1)).squeeze(-1)

    def _matrix_residual(self, users, user_emb, items, item_emb):
        num_users, num_items = user_emb.shape[0], item_emb.shape[0]
        parts = [
            user_emb.unsqueeze(1).expand(num_users, num_items, -1),
            item_emb.unsqueeze(0).expand(num_users, num_items, -1),
        ]
        if self.use_item_genres:
            genres = self.item_genres[items]
            parts.append(genres.unsqueeze(0).expand(num_users, num_items, -1))
        if self.use_user_features:
            aux = self.user_features[users]
            parts.append(aux.unsqueeze(1).expand(num_users, num_items, -1))
        return self.mlp(torch.cat(parts, dim=-1)).squeeze(-1)


def build_retrieval_model(
    store,
    *,
    embedding_dim: int,
    deep: bool = False,
    use_item_genres: bool = True,
    use_user_aux_features: bool = False,
    mlp: MLPConfig | None = None,
    init: Mapping[str, Any] | None = None,
    device: torch.device | None = None,
) -> RetrievalModel:
    """Create a freshly initialised model sized for ``store``'s index spaces."""
    if deep:
        model: RetrievalModel = DeepRetrievalModel(
            num_users=store.num_users,
            num_items=store.num_items,
            embedding_dim=embedding_dim,
            item_genres=store.item_genre_matrix if use_item_genres else None,
            user_features=store.user_feature_matrix if use_user_aux_features else None,
            mlp=mlp,
            init=init,
            index_generation=store.generation,
        )
    else:
        model = BilinearRetrievalModel(
            num_users=store.num_users,
            num_items=store.num_items,
            embedding_dim=embedding_dim,
            init=init,
            index_generation=store.generation,
        )
    if device is not None:
        model = model.to(device)
    return model
