"""
YAML configuration helpers.

The demo reads one nested mapping (``experiment``, ``data``, ``model``,
``training``, ``serving``, ``projection``, ``output``); command-line overrides
address individual values with dotted keys such as ``training.epochs``.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Iterable, Mapping, MutableMapping

import yaml


def load_config(config_path: Path | str, overrides: Iterable[str] = ()) -> dict[str, Any]:
    """Read a YAML file into a dict and apply any ``key=value`` overrides."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, Mapping):
        raise ValueError(f"Top level of {config_path} must be a mapping.")
    return apply_overrides(loaded, overrides)


def clone_config(config: Mapping[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(dict(config))


def set_by_dotted_path(config: MutableMapping[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign ``value`` at ``dotted_key``, creating intermediate sections.

    >>> cfg = {"training": {"epochs": 5}}
    >>> set_by_dotted_path(cfg, "training.epochs", 2)
    >>> cfg["training"]["epochs"]
    2
    """
    *parents, leaf = dotted_key.split(".")
    section = config
    for key in parents:
        child = section.get(key)
        if not isinstance(child, MutableMapping):
            child = section[key] = {}
        section = child
    section[leaf] = value


def get_by_dotted_path(config: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    node: Any = config
    for key in dotted_key.split("."):
        if not isinstance(node, Mapping) or key not in node:
            return default
        node = node[key]
    return node


def parse_override(expression: str) -> tuple[str, Any]:
    """
    Split a ``dotted.key=value`` override; the value is parsed as YAML.

    >>> parse_override("training.epochs=3")
    ('training.epochs', 3)
    """
    key, sep, raw_value = expression.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"Override must look like 'section.key=value', got {expression!r}")
    return key, yaml.safe_load(raw_value)


def apply_overrides(config: Mapping[str, Any], overrides: Iterable[str]) -> dict[str, Any]:
    """Return a copy of ``config`` with every ``key=value`` override applied."""
    updated = clone_config(config)
    for expression in overrides:
        key, value = parse_override(expression)
        set_by_dotted_path(updated, key, value)
    return updated
