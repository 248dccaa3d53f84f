"""
End-to-end demo: load data, train the classic and (optionally) deep models,
project the item space, and compare recommendations for a random test user.

Each stage is a plain function so scripts and tests can run them piecemeal;
``run_demo`` wires them together from a configuration mapping.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import numpy as np
from loguru import logger

from twotower.data.loaders import (
    DEFAULT_INTERACTIONS_FILENAME,
    DEFAULT_ITEMS_FILENAME,
    GENRE_DIM,
    DataSource,
    DirectoryDataSource,
    load_dataset,
)
from twotower.data.store import InteractionStore, load_interaction_store
from twotower.errors import NoEligibleUserError
from twotower.evaluation.embeddings import ItemProjection, project_item_embeddings
from twotower.models.encoders import MLPConfig
from twotower.models.two_tower import build_retrieval_model
from twotower.reporting.plots import save_embedding_projection, save_loss_curves
from twotower.serving.recommender import DEFAULT_CHUNK_SIZE, RecommendationServer
from twotower.session import Session
from twotower.utils.config import get_by_dotted_path

from .training import TrainingConfig, TrainingHistory, TrainingLoop, seed_everything

CLASSIC = "classic"
DEEP = "deep"


@dataclass(frozen=True)
class DataSettings:
    root: Path = Path("data")
    interactions_file: str = DEFAULT_INTERACTIONS_FILENAME
    items_file: str = DEFAULT_ITEMS_FILENAME
    max_interactions: int | None = 20000
    genre_dim: int = GENRE_DIM

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "DataSettings":
        limit = section.get("max_interactions", 20000)
        return cls(
            root=Path(section.get("root", "data")),
            interactions_file=str(section.get("interactions_file", DEFAULT_INTERACTIONS_FILENAME)),
            items_file=str(section.get("items_file", DEFAULT_ITEMS_FILENAME)),
            max_interactions=None if limit is None else int(limit),
            genre_dim=int(section.get("genre_dim", GENRE_DIM)),
        )


@dataclass(frozen=True)
class ModelSettings:
    embedding_dim: int = 32
    init: Mapping[str, Any] = field(default_factory=lambda: {"type": "normal", "std": 0.05})
    use_deep_features: bool = False
    use_item_genres: bool = True
    use_user_aux_features: bool = False
    mlp: MLPConfig = MLPConfig()

    def __post_init__(self) -> None:
        if self.embedding_dim < 1:
            raise ValueError("embedding_dim must be positive.")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "ModelSettings":
        deep_cfg = dict(section.get("deep", {}) or {})
        return cls(
            embedding_dim=int(section.get("embedding_dim", 32)),
            init=dict(section.get("init") or {"type": "normal", "std": 0.05}),
            use_deep_features=bool(section.get("use_deep_features", False)),
            use_item_genres=bool(section.get("use_item_genres", True)),
            use_user_aux_features=bool(section.get("use_user_aux_features", False)),
            mlp=MLPConfig(
                hidden_dims=tuple(int(h) for h in deep_cfg.get("hidden_dims", (64, 32))),
                activation=str(deep_cfg.get("activation", "relu")),
                dropout=float(deep_cfg.get("dropout", 0.0)),
            ),
        )


@dataclass(frozen=True)
class ServingSettings:
    top_k: int = 10
    chunk_size: int = DEFAULT_CHUNK_SIZE
    min_ratings_for_eligible_test_user: int = 20

    def __post_init__(self) -> None:
        if self.top_k < 0:
            raise ValueError("top_k must be non-negative.")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1.")

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "ServingSettings":
        return cls(
            top_k=int(section.get("top_k", 10)),
            chunk_size=int(section.get("chunk_size", DEFAULT_CHUNK_SIZE)),
            min_ratings_for_eligible_test_user=int(
                section.get("min_ratings_for_eligible_test_user", 20)
            ),
        )


@dataclass(frozen=True)
class DemoConfig:
    """Typed view of the YAML configuration consumed by ``run_demo``."""

    seed: int
    data: DataSettings
    model: ModelSettings
    training: TrainingConfig
    serving: ServingSettings
    projection_sample_size: int
    output_dir: Path

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "DemoConfig":
        seed = int(get_by_dotted_path(config, "experiment.seed", 0))
        sample_size = int(get_by_dotted_path(config, "projection.sample_size", 1000))
        if sample_size < 1:
            raise ValueError("projection.sample_size must be positive.")
        return cls(
            seed=seed,
            data=DataSettings.from_mapping(config.get("data", {}) or {}),
            model=ModelSettings.from_mapping(config.get("model", {}) or {}),
            training=TrainingConfig.from_mapping(config.get("training", {}) or {}, seed=seed),
            serving=ServingSettings.from_mapping(config.get("serving", {}) or {}),
            projection_sample_size=sample_size,
            output_dir=Path(get_by_dotted_path(config, "output.dir", "artifacts")),
        )


@dataclass
class DemoResult:
    store: InteractionStore
    sessions: dict[str, Session]
    histories: dict[str, TrainingHistory]
    runtime_seconds: float
    test_user: int | None = None
    historical: list[dict[str, Any]] = field(default_factory=list)
    recommendations: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    projection: ItemProjection | None = None
    report_path: Path | None = None
    loss_plot_path: Path | None = None
    projection_plot_path: Path | None = None


def load_store(
    settings: DataSettings,
    *,
    source: DataSource | None = None,
    seed: int = 0,
) -> InteractionStore:
    """Read both inputs and build the interaction store."""
    source = source or DirectoryDataSource(settings.root)
    dataset = load_dataset(
        source,
        interactions_name=settings.interactions_file,
        items_name=settings.items_file,
        genre_dim=settings.genre_dim,
    )
    return load_interaction_store(
        dataset.interactions,
        dataset.items,
        max_interactions=settings.max_interactions,
        seed=seed,
        genre_dim=settings.genre_dim,
    )


def train_model(
    store: InteractionStore,
    model_settings: ModelSettings,
    training_config: TrainingConfig,
    *,
    deep: bool,
) -> tuple[Session, TrainingHistory]:
    """Build a fresh model for ``store`` and train it to completion."""
    model = build_retrieval_model(
        store,
        embedding_dim=model_settings.embedding_dim,
        deep=deep,
        use_item_genres=model_settings.use_item_genres,
        use_user_aux_features=model_settings.use_user_aux_features,
        mlp=model_settings.mlp,
        init=model_settings.init,
    )
    session = Session(store, model, name=DEEP if deep else CLASSIC)
    history = TrainingLoop(session, training_config).fit()
    return session, history


def describe_recommendations(
    server: RecommendationServer, user_index: int, *, k: int
) -> list[dict[str, Any]]:
    store = server.store
    return [
        {
            "item_index": rec.item_index,
            "item_id": store.item_index.to_external(rec.item_index),
            "title": store.item_title(rec.item_index),
            "year": store.item_year(rec.item_index),
            "score": rec.score,
        }
        for rec in server.recommend(user_index, k=k)
    ]


def describe_history(
    server: RecommendationServer, user_index: int, *, k: int
) -> list[dict[str, Any]]:
    store = server.store
    return [
        {
            "item_index": entry.item_index,
            "title": store.item_title(entry.item_index),
            "year": store.item_year(entry.item_index),
            "rating": entry.rating,
            "timestamp": entry.timestamp,
        }
        for entry in server.historical_top_k(user_index, k=k)
    ]


def _format_title(entry: Mapping[str, Any]) -> str:
    year = entry.get("year")
    return f"{entry['title']} ({year})" if year is not None else str(entry["title"])


def write_demo_report(report_path: Path, result: DemoResult) -> None:
    report_path.parent.mkdir(parents=True, exist_ok=True)
    store = result.store
    lines: list[str] = []
    lines.append("# Two-Tower Retrieval Demo\n")
    lines.append(
        f"- Interactions: {store.num_interactions} | users: {store.num_users} | "
        f"items: {store.num_items} | dropped (no metadata): {store.dropped_interactions}"
    )
    lines.append(f"- Runtime: {result.runtime_seconds:.1f}s\n")

    lines.append("## Loss Curves\n")
    if result.loss_plot_path is not None:
        lines.append(f"![Loss curves]({result.loss_plot_path.as_posix()})\n")
    for name, history in result.histories.items():
        lines.append(f"### {name.title()} model\n")
        lines.append("Epoch | Batches | Mean loss")
        lines.append("--- | --- | ---")
        for epoch, (batches, loss) in enumerate(
            zip(history.batches_per_epoch, history.epoch_loss), start=1
        ):
            lines.append(f"{epoch} | {batches} | {loss:.4f}")
        if history.cancelled:
            lines.append("\n_Training was cancelled._")
        lines.append("")

    if result.projection_plot_path is not None:
        lines.append("## Item Embedding Projection\n")
        lines.append(f"![Item projection]({result.projection_plot_path.as_posix()})\n")

    lines.append("## Test User\n")
    if result.test_user is None:
        lines.append("No eligible test user in the loaded subset.")
    else:
        external = store.user_index.to_external(result.test_user)
        lines.append(f"User index {result.test_user} (original id {external})\n")
        lines.append("### Historical top ratings (by rating, then recency)\n")
        for rank, entry in enumerate(result.historical, start=1):
            lines.append(
                f"{rank}. {_format_title(entry)} | rating {entry['rating']}, ts {entry['timestamp']}"
            )
        lines.append("")
        for name, recs in result.recommendations.items():
            lines.append(f"### {name.title()} two-tower recommendations\n")
            for rank, rec in enumerate(recs, start=1):
                lines.append(f"{rank}. {_format_title(rec)} | score {rec['score']:.4f}")
            lines.append("")

    report_path.write_text("\n".join(lines), encoding="utf-8")


def run_demo(config: Mapping[str, Any], *, source: DataSource | None = None) -> DemoResult:
    """
    Run the full demo described by ``config``.

    Data source, divergence, and shape errors propagate; a subset without an
    eligible test user only skips the recommendation comparison.
    """
    demo_config = DemoConfig.from_mapping(config)
    seed = demo_config.seed
    data_settings = demo_config.data
    model_settings = demo_config.model
    training_config = demo_config.training
    serving = demo_config.serving
    output_dir = demo_config.output_dir
    seed_everything(seed)
    start_time = time.time()

    logger.info("Loading data from {}", data_settings.root)
    store = load_store(data_settings, source=source, seed=seed)

    sessions: dict[str, Session] = {}
    histories: dict[str, TrainingHistory] = {}
    variants = [CLASSIC] + ([DEEP] if model_settings.use_deep_features else [])
    for variant in variants:
        session, history = train_model(
            store, model_settings, training_config, deep=variant == DEEP
        )
        sessions[variant] = session
        histories[variant] = history

    result = DemoResult(
        store=store,
        sessions=sessions,
        histories=histories,
        runtime_seconds=0.0,
    )

    primary = sessions[DEEP] if DEEP in sessions else sessions[CLASSIC]
    result.projection = project_item_embeddings(
        primary,
        sample_size=demo_config.projection_sample_size,
        seed=seed,
    )
    result.projection_plot_path = save_embedding_projection(
        result.projection.coords,
        labels=result.projection.titles,
        output_path=output_dir / "item_projection.png",
    )

    loss_series = {name.title(): history.batch_loss for name, history in histories.items()}
    if any(loss_series.values()):
        result.loss_plot_path = save_loss_curves(
            loss_series, output_path=output_dir / "loss.png"
        )

    servers = {
        name: RecommendationServer(session, chunk_size=serving.chunk_size)
        for name, session in sessions.items()
    }
    rng = np.random.default_rng(seed)
    try:
        test_user = servers[CLASSIC].choose_test_user(
            serving.min_ratings_for_eligible_test_user, rng
        )
    except NoEligibleUserError as exc:
        logger.warning("{}", exc)
        test_user = None

    if test_user is not None:
        result.test_user = test_user
        result.historical = describe_history(servers[CLASSIC], test_user, k=serving.top_k)
        for name, server in servers.items():
            result.recommendations[name] = describe_recommendations(
                server, test_user, k=serving.top_k
            )
            logger.info("User {} | Top {} {} recommendations:", test_user, serving.top_k, name)
            for rank, rec in enumerate(result.recommendations[name], start=1):
                logger.info("  {}. {} | score={:.4f}", rank, _format_title(rec), rec["score"])

    result.runtime_seconds = time.time() - start_time
    result.report_path = output_dir / "report.md"
    write_demo_report(result.report_path, result)
    logger.info("Demo report written to {}", result.report_path)
    return result
