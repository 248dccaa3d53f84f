"""
Reusable building blocks for the retrieval models: ID embedding tables and the
small feed-forward network used by the deep scoring path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import torch
from torch import nn


def _init_embedding(
    embedding: nn.Embedding, init_config: Mapping[str, Any] | None = None
) -> None:
    init_config = init_config or {"type": "normal", "std": 0.05}
    init_type = str(init_config.get("type", "normal")).lower()

    if init_type == "normal":
        std = float(init_config.get("std", 0.05))
        nn.init.normal_(embedding.weight, mean=0.0, std=std)
    elif init_type == "uniform":
        bound = float(init_config.get("bound", 0.1))
        nn.init.uniform_(embedding.weight, -bound, bound)
    elif init_type == "xavier_normal":
        nn.init.xavier_normal_(embedding.weight)
    elif init_type == "xavier_uniform":
        nn.init.xavier_uniform_(embedding.weight)
    else:
        raise ValueError(f"Unsupported embedding init type: {init_type}")


def build_id_embedding(
    *,
    num_embeddings: int,
    embedding_dim: int,
    init: Mapping[str, Any] | None = None,
    device: torch.device | None = None,
) -> nn.Embedding:
    if num_embeddings <= 0:
        raise ValueError("num_embeddings must be positive.")
    if embedding_dim <= 0:
        raise ValueError("embedding_dim must be positive.")

    embedding = nn.Embedding(num_embeddings=num_embeddings, embedding_dim=embedding_dim)
    _init_embedding(embedding, init)

    if device is not None:
        embedding = embedding.to(device)
    return embedding


def _get_activation(name: str) -> nn.Module:
    key = name.lower()
    if key == "relu":
        return nn.ReLU()
    if key == "gelu":
        return nn.GELU()
    if key == "tanh":
        return nn.Tanh()
    if key == "selu":
        return nn.SELU()
    raise ValueError(f"Unsupported activation '{name}'")


@dataclass(frozen=True)
class MLPConfig:
    hidden_dims: Iterable[int] = (64, 32)
    activation: str = "relu"
    dropout: float = 0.0


def build_scoring_mlp(config: MLPConfig | None, *, input_dim: int) -> nn.Sequential:
    """
    Build the feed-forward network mapping a concatenated feature row to one scalar.

    The final layer starts at zero so a freshly built deep model scores exactly
    like its bilinear counterpart.
    """
    if input_dim <= 0:
        raise ValueError("input_dim must be positive.")

    cfg = config or MLPConfig()
    layers: list[nn.Module] = []
    prev_dim = input_dim
    for hidden_dim in [int(h) for h in cfg.hidden_dims]:
        linear = nn.Linear(prev_dim, hidden_dim)
        nn.init.xavier_uniform_(linear.weight)
        nn.init.zeros_(linear.bias)
        layers.extend([linear, _get_activation(cfg.activation)])
        if cfg.dropout:
            layers.append(nn.Dropout(p=cfg.dropout))
        prev_dim = hidden_dim

    final_linear = nn.Linear(prev_dim, 1)
    nn.init.zeros_(final_linear.weight)
    nn.init.zeros_(final_linear.bias)
    layers.append(final_linear)
    return nn.Sequential(*layers)
