"""CSV row parser: converts raw tabular rows into BatchRow fragments.

Rules:
  - Each field has a tuple of accepted column headers; the first non-empty
    value wins and is trimmed.
  - title, difficulty and link are required; a row missing any of them
    becomes a RowError and parsing continues with the next row.
  - Numeric columns that are absent or unparsable read as 0 (never NaN).
  - Every row yields exactly one CompanyTag built from the batch's company
    and recency bucket, not from the row.
"""

import csv
import logging
import math
from collections.abc import Iterable, Mapping
from pathlib import Path

from src.core.schemas import DIFFICULTIES, BatchRow, CompanyTag, RowError

logger = logging.getLogger(__name__)

TITLE_COLUMNS = ("Title", "title")
DIFFICULTY_COLUMNS = ("Difficulty", "difficulty")
LINK_COLUMNS = ("URL", "url", "Link", "link")
ACCEPTANCE_COLUMNS = ("Acceptance %", "Acceptance Rate", "acceptanceRate")
FREQUENCY_COLUMNS = ("Frequency %", "frequency")
TOPICS_COLUMNS = ("Topics", "topics")

_DIFFICULTY_LOOKUP = {d.lower(): d for d in DIFFICULTIES}

RawRow = Mapping[str, str | None]


def read_csv_rows(path: str | Path) -> list[dict[str, str]]:
    """Read a CSV file into a list of header-keyed dicts."""
    path = Path(path)
    if not path.exists():
        msg = f"CSV file not found: {path}"
        raise FileNotFoundError(msg)
    # utf-8-sig strips the BOM spreadsheet exports like to prepend
    with path.open(newline="", encoding="utf-8-sig") as handle:
        rows = list(csv.DictReader(handle))
    logger.debug("Read %d rows from %s", len(rows), path)
    return rows


def parse_rows(
    rows: Iterable[RawRow],
    company: str,
    asked_within: str,
) -> tuple[list[BatchRow], list[RowError]]:
    """Parse every row, collecting valid fragments and row errors separately."""
    parsed: list[BatchRow] = []
    errors: list[RowError] = []
    for index, raw in enumerate(rows, start=1):
        result = parse_row(raw, index, company, asked_within)
        if isinstance(result, RowError):
            errors.append(result)
        else:
            parsed.append(result)
    if errors:
        logger.debug("Row parser rejected %d rows", len(errors))
    return parsed, errors


def parse_row(
    raw: RawRow,
    row_number: int,
    company: str,
    asked_within: str,
) -> BatchRow | RowError:
    """Parse one row. ``row_number`` is the 1-based data row index."""
    title = _first_value(raw, TITLE_COLUMNS)
    difficulty_raw = _first_value(raw, DIFFICULTY_COLUMNS)
    link = _first_value(raw, LINK_COLUMNS)

    missing = [
        name
        for name, value in (("title", title), ("difficulty", difficulty_raw), ("link", link))
        if not value
    ]
    if missing:
        return RowError(
            row=row_number,
            message=f"Missing required fields: {', '.join(missing)}",
            kind="missing_required_field",
        )

    difficulty = _DIFFICULTY_LOOKUP.get(difficulty_raw.lower())
    if difficulty is None:
        return RowError(
            row=row_number,
            message=f"Invalid difficulty '{difficulty_raw}' (expected one of {', '.join(DIFFICULTIES)})",
            kind="invalid_field",
        )

    frequency = parse_number(_first_value(raw, FREQUENCY_COLUMNS))
    return BatchRow(
        row=row_number,
        title=title,
        difficulty=difficulty,
        topics=parse_topics(_first_value(raw, TOPICS_COLUMNS)),
        link=link,
        acceptance_rate=parse_number(_first_value(raw, ACCEPTANCE_COLUMNS)),
        frequency=frequency,
        company=CompanyTag(
            company=company,
            last_asked_date=None,
            asked_within=asked_within,
            frequency=frequency,
        ),
    )


def parse_topics(value: str) -> list[str]:
    """Split a comma-separated topics cell, dropping blanks and repeats."""
    topics: list[str] = []
    for part in value.split(","):
        topic = part.strip()
        if topic and topic not in topics:
            topics.append(topic)
    return topics


def parse_number(value: str) -> float:
    """Parse a numeric cell such as '49.2' or '49.2%'. Bad input reads as 0."""
    text = value.strip().rstrip("%").strip()
    if not text:
        return 0.0
    try:
        number = float(text)
    except ValueError:
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _first_value(raw: RawRow, columns: tuple[str, ...]) -> str:
    """Return the first non-blank value among ``columns``, trimmed, or ""."""
    for column in columns:
        value = raw.get(column)
        if value is not None and value.strip():
            return value.strip()
    return ""
