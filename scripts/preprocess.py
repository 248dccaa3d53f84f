"""Load and validate the input files without training anything."""

from __future__ import annotations

import argparse
from pathlib import Path

import numpy as np
from loguru import logger

from twotower.pipelines.demo import DataSettings, load_store
from twotower.utils import get_by_dotted_path, load_config


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/default.yaml"),
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config value (repeatable).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = load_config(args.config, args.overrides)
    settings = DataSettings.from_mapping(config.get("data", {}) or {})
    seed = int(get_by_dotted_path(config, "experiment.seed", 0))

    logger.info("Loading raw data from {}", settings.root)
    store = load_store(settings, seed=seed)

    counts = store.interaction_counts()
    logger.info(
        "Counts | users={} items={} interactions={} dropped={}",
        store.num_users,
        store.num_items,
        store.num_interactions,
        store.dropped_interactions,
    )
    logger.info(
        "Ratings per user | min={} median={:.1f} max={}",
        int(counts.min()),
        float(np.median(counts)),
        int(counts.max()),
    )
    logger.debug(
        "Feature dims | item_genres={} user_aux={}",
        store.item_genre_matrix.shape[1],
        store.user_feature_matrix.shape[1],
    )


if __name__ == "__main__":
    main()
