"""Command-line interface for running the two-tower retrieval demo."""

from __future__ import annotations

import argparse
from pathlib import Path

from loguru import logger

from twotower.pipelines import run_demo
from twotower.utils import load_config


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
        help="Override a config value, e.g. --set training.epochs=3 (repeatable).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = load_config(args.config, args.overrides)
    logger.info("Starting demo with config at {}", args.config)
    if args.overrides:
        logger.info("Overrides: {}", ", ".join(args.overrides))
    result = run_demo(config)
    logger.success(
        "Finished in {:.1f}s | report at {}", result.runtime_seconds, result.report_path
    )


if __name__ == "__main__":
    main()
