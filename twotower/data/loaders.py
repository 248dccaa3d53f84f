"""
Typed data loading helpers for the MovieLens-style input files.

Interaction lines are ``user\\titem\\trating\\ttimestamp`` and item lines are
pipe-separated ``id|title|release|video_release|imdb_url|genre_0..genre_18``.
Malformed lines are skipped and counted rather than aborting the load.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

import pandas as pd
from loguru import logger

from twotower.errors import DataSourceError, EmptyInputError, MalformedRecordError


DEFAULT_INTERACTIONS_FILENAME = "u.data"
DEFAULT_ITEMS_FILENAME = "u.item"
GENRE_DIM = 19
MIN_RATING = 1
MAX_RATING = 5
ITEM_HEADER_FIELDS = 5

_TITLE_YEAR = re.compile(r"^(.*)\s+\((\d{4})\)\s*$")

INTERACTION_COLUMNS = ["user_id", "item_id", "rating", "timestamp"]
ITEM_COLUMNS = [
    "item_id",
    "title",
    "year",
    "genres",
    "raw_title",
    "release_date",
    "video_release_date",
    "imdb_url",
]


class DataSource(Protocol):
    """Provides the raw text of a logical input such as ``u.data``."""

    def read_text(self, name: str) -> str:
        ...


class DirectoryDataSource:
    """Reads named inputs from files below a root directory."""

    def __init__(self, root: Path | str, *, encoding: str = "latin-1") -> None:
        self.root = Path(root)
        self.encoding = encoding

    def read_text(self, name: str) -> str:
        path = self.root / name
        if not path.exists():
            raise DataSourceError(f"Expected input at {path} but file was not found.")
        try:
            return path.read_text(encoding=self.encoding)
        except OSError as exc:
            raise DataSourceError(f"Failed to read {path}: {exc}") from exc


class InMemoryDataSource:
    """Serves inputs from an in-memory mapping of name to text."""

    def __init__(self, files: Mapping[str, str]) -> None:
        self._files = dict(files)

    def read_text(self, name: str) -> str:
        try:
            return self._files[name]
        except KeyError as exc:
            raise DataSourceError(f"No input named '{name}'.") from exc


@dataclass(frozen=True)
class ParseReport:
    valid: int
    malformed: int


@dataclass(frozen=True)
class DatasetArtifacts:
    """Container for the parsed raw tables."""

    interactions: pd.DataFrame
    items: pd.DataFrame
    interaction_report: ParseReport
    item_report: ParseReport


def _parse_int(value: str, field: str, line_number: int | None) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise MalformedRecordError(
            f"field '{field}' is not an integer: {value!r}", line_number=line_number
        ) from exc


def parse_interaction_line(
    line: str, *, line_number: int | None = None
) -> tuple[int, int, int, int]:
    """Parse one ``user\\titem\\trating\\ttimestamp`` line."""
    parts = line.split()
    if len(parts) < 4:
        raise MalformedRecordError(
            f"expected 4 fields, found {len(parts)}", line_number=line_number
        )
    user_id = _parse_int(parts[0], "user_id", line_number)
    item_id = _parse_int(parts[1], "item_id", line_number)
    rating = _parse_int(parts[2], "rating", line_number)
    timestamp = _parse_int(parts[3], "timestamp", line_number)
    if not MIN_RATING <= rating <= MAX_RATING:
        raise MalformedRecordError(
            f"rating {rating} outside [{MIN_RATING}, {MAX_RATING}]",
            line_number=line_number,
        )
    return user_id, item_id, rating, timestamp


def split_title_year(raw_title: str) -> tuple[str, int | None]:
    """Strip a trailing ``(YYYY)`` annotation from a title and return it as the year."""
    match = _TITLE_YEAR.match(raw_title)
    if match is None:
        return raw_title.strip(), None
    return match.group(1).strip(), int(match.group(2))


def parse_item_line(
    line: str, *, genre_dim: int = GENRE_DIM, line_number: int | None = None
) -> dict:
    """Parse one pipe-separated item metadata line into a record dict."""
    parts = line.split("|")
    if len(parts) < 2:
        raise MalformedRecordError("expected at least id and title", line_number=line_number)

    item_id = _parse_int(parts[0], "item_id", line_number)
    raw_title = parts[1].strip()
    title, year = split_title_year(raw_title)
    if not title:
        title = f"Item {item_id}"

    header = parts + [""] * max(0, ITEM_HEADER_FIELDS - len(parts))
    flags_raw = parts[ITEM_HEADER_FIELDS:]
    if len(flags_raw) > genre_dim:
        logger.warning(
            "Item {} has {} genre flags; keeping the first {}.",
            item_id,
            len(flags_raw),
            genre_dim,
        )
        flags_raw = flags_raw[:genre_dim]

    genres: list[int] = []
    for flag in flags_raw:
        value = _parse_int(flag or "0", "genre", line_number)
        if value not in (0, 1):
            raise MalformedRecordError(
                f"genre flag must be 0 or 1, found {value}", line_number=line_number
            )
        genres.append(value)
    genres.extend([0] * (genre_dim - len(genres)))

    return {
        "item_id": item_id,
        "title": title,
        "year": year,
        "genres": tuple(genres),
        "raw_title": raw_title,
        "release_date": header[2].strip(),
        "video_release_date": header[3].strip(),
        "imdb_url": header[4].strip(),
    }


def _iter_lines(text: str):
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if stripped:
            yield line_number, stripped


def parse_interactions(text: str) -> tuple[pd.DataFrame, ParseReport]:
    """
    Parse interaction text into a DataFrame with ``user_id``, ``item_id``,
    ``rating`` and ``timestamp`` columns.

    Raises
    ------
    EmptyInputError
        When no line parses successfully.
    """
    records: list[tuple[int, int, int, int]] = []
    malformed = 0
    for line_number, line in _iter_lines(text):
        try:
            records.append(parse_interaction_line(line, line_number=line_number))
        except MalformedRecordError as exc:
            malformed += 1
            logger.debug("Skipping interaction record: {}", exc)

    if malformed:
        logger.warning("Skipped {} malformed interaction lines.", malformed)
    if not records:
        raise EmptyInputError("No valid interaction records were found.")

    frame = pd.DataFrame.from_records(records, columns=INTERACTION_COLUMNS).astype("int64")
    return frame, ParseReport(valid=len(records), malformed=malformed)


def parse_items(text: str, *, genre_dim: int = GENRE_DIM) -> tuple[pd.DataFrame, ParseReport]:
    """
    Parse item metadata text into a DataFrame keyed by unique ``item_id``.

    Raises
    ------
    EmptyInputError
        When no line parses successfully.
    """
    records: list[dict] = []
    seen: set[int] = set()
    malformed = 0
    for line_number, line in _iter_lines(text):
        try:
            record = parse_item_line(line, genre_dim=genre_dim, line_number=line_number)
        except MalformedRecordError as exc:
            malformed += 1
            logger.debug("Skipping item record: {}", exc)
            continue
        if record["item_id"] in seen:
            logger.debug("Duplicate metadata for item {}; keeping the first.", record["item_id"])
            continue
        seen.add(record["item_id"])
        records.append(record)

    if malformed:
        logger.warning("Skipped {} malformed item lines.", malformed)
    if not records:
        raise EmptyInputError("No valid item metadata records were found.")

    frame = pd.DataFrame.from_records(records, columns=ITEM_COLUMNS)
    frame["item_id"] = frame["item_id"].astype("int64")
    frame["year"] = pd.array(frame["year"].tolist(), dtype="Int64")
    return frame, ParseReport(valid=len(records), malformed=malformed)


def load_dataset(
    source: DataSource,
    *,
    interactions_name: str = DEFAULT_INTERACTIONS_FILENAME,
    items_name: str = DEFAULT_ITEMS_FILENAME,
    genre_dim: int = GENRE_DIM,
) -> DatasetArtifacts:
    """
    Read and parse both inputs from ``source``.

    Data source failures propagate as ``DataSourceError``.
    """
    logger.info("Reading item metadata '{}'", items_name)
    items, item_report = parse_items(source.read_text(items_name), genre_dim=genre_dim)

    logger.info("Reading interactions '{}'", interactions_name)
    interactions, interaction_report = parse_interactions(source.read_text(interactions_name))

    logger.debug(
        "Parsed records | interactions={} (malformed={}) items={} (malformed={})",
        interaction_report.valid,
        interaction_report.malformed,
        item_report.valid,
        item_report.malformed,
    )
    return DatasetArtifacts(
        interactions=interactions,
        items=items,
        interaction_report=interaction_report,
        item_report=item_report,
    )
