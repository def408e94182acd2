"""
Tabular record loaders: CSV, JSON and Parquet into ``list[dict]``.

Every loader returns plain records (feature name -> scalar) ready for
``Trainer.load_raw`` / ``Model.predict*``. No schema is imposed here; feature
validation happens in the analyzer and trainer.

``clean_data`` dedupes, fills nulls and normalises strings on a copy of the
records; ``save_data`` writes them back out as JSON or CSV.

CSV typing rules
----------------
Header names and cell values are stripped, then each cell is typed:

  ""                       -> None
  "true" / "false"         -> True / False  (case-insensitive)
  "42", "-7"               -> int
  "3.5", "1e-3", "nan"     -> float
  anything else            -> str (stripped)

Rows where every cell is empty are dropped.
"""

from __future__ import annotations

import csv
import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

from hashboost.exceptions import ValidationError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

_INT_RE = re.compile(r"^[+-]?\d+$")


def _type_cell(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_RE.match(text):
        return int(text)
    try:
        return float(text)
    except ValueError:
        return text


# ── Loaders ───────────────────────────────────────────────────────────────────


def load_csv(
    path: Path | str,
    delimiter: str = ",",
    has_header: bool = True,
    max_rows: Optional[int] = None,
    skip_rows: int = 0,
    encoding: str = "utf-8",
) -> list[Record]:
    """Parse a delimited text file into typed records.

    Args:
        path:       CSV file path.
        delimiter:  Field separator.
        has_header: When False, columns are named ``column_0``, ``column_1``...
        max_rows:   Keep at most this many data rows (after ``skip_rows``).
        skip_rows:  Data rows to drop from the start.
        encoding:   File text encoding.

    Returns:
        List of records.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValidationError:   If the file has no header row.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    logger.info("Loading CSV file: %s (%d KB)", path, round(path.stat().st_size / 1024))

    with open(path, encoding=encoding, newline="") as f:
        reader = csv.reader(f, delimiter=delimiter)
        header: Optional[list[str]] = None
        if has_header:
            header = next(reader, None)
            if header is None:
                raise ValidationError(f"CSV file is empty or has no header row: {path}")
            header = [h.strip() for h in header]

        records: list[Record] = []
        for row in reader:
            if not any(cell.strip() for cell in row):
                continue
            names = header or [f"column_{i}" for i in range(len(row))]
            records.append(
                {name: _type_cell(row[i] if i < len(row) else None) for i, name in enumerate(names)}
            )

    if skip_rows > 0:
        logger.info("Skipping first %d rows", skip_rows)
        records = records[skip_rows:]
    if max_rows is not None and len(records) > max_rows:
        logger.warning("Limiting data to %d rows (original: %d)", max_rows, len(records))
        records = records[:max_rows]

    logger.info(
        "Loaded %d rows x %d columns from %s",
        len(records), len(records[0]) if records else 0, path.name,
    )
    return records


def load_json(path: Path | str) -> list[Record]:
    """Load a JSON file holding an array of objects.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValidationError:   If the document is not an array of objects.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in {path}: {exc}") from exc

    if not isinstance(payload, list):
        raise ValidationError(f"JSON file must contain an array of objects: {path}")
    if any(not isinstance(item, dict) for item in payload):
        raise ValidationError(f"JSON array must contain only objects: {path}")

    logger.info("Loaded %d records from %s", len(payload), path.name)
    return payload


def load_parquet(path: Path | str) -> list[Record]:
    """Read a Parquet file into records via ``pyarrow``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    import pyarrow.parquet as pq

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parquet file not found: {path}")

    records: list[Record] = pq.read_table(str(path)).to_pylist()
    logger.info("Loaded %d records from %s", len(records), path.name)
    return records


def load_records(path: Path | str) -> list[Record]:
    """Dispatch on file extension (``.csv``, ``.tsv``, ``.json``, ``.parquet``)."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return load_csv(path)
    if suffix == ".tsv":
        return load_csv(path, delimiter="\t")
    if suffix == ".json":
        return load_json(path)
    if suffix in (".parquet", ".pq"):
        return load_parquet(path)
    raise ValidationError(f"Unsupported data file type {suffix!r}: {path}")


# ── Data checks ───────────────────────────────────────────────────────────────


def validate_data(data: Sequence[Any], required_features: Sequence[str] = ()) -> bool:
    """True when ``data`` is a non-empty list of dicts carrying every required feature.

    Problems are logged, never raised.
    """
    if not isinstance(data, (list, tuple)):
        logger.error("Data is not a list of records")
        return False
    if not data:
        logger.warning("Data is empty")
        return False

    invalid = sum(1 for r in data if not isinstance(r, dict))
    if invalid:
        logger.error("Found %d invalid records (not mappings)", invalid)
        return False

    missing = [f for f in required_features if f not in data[0]]
    if missing:
        logger.error("Missing required features: %s", ", ".join(missing))
        return False

    logger.debug("Data validation passed: %d records, %d features", len(data), len(data[0]))
    return True


@dataclass(frozen=True)
class FeatureQuality:
    null_count: int
    unique_count: int


@dataclass(frozen=True)
class DataQualityReport:
    """Null and duplicate counts over a record list.

    Attributes:
        total_rows:      Number of records.
        total_features:  Columns in the first record.
        null_count:      Null cells across those columns.
        duplicate_count: Records identical to an earlier record.
        feature_stats:   Per-column null and distinct non-null counts.
    """

    total_rows: int
    total_features: int
    null_count: int
    duplicate_count: int
    feature_stats: dict[str, FeatureQuality] = field(default_factory=dict)


def analyze_data_quality(data: Sequence[Record]) -> DataQualityReport:
    if not data:
        return DataQualityReport(total_rows=0, total_features=0, null_count=0, duplicate_count=0)

    features = list(data[0])
    stats: dict[str, FeatureQuality] = {}
    total_nulls = 0
    for feature in features:
        values = [r.get(feature) for r in data]
        nulls = sum(1 for v in values if v is None)
        total_nulls += nulls
        stats[feature] = FeatureQuality(
            null_count=nulls,
            unique_count=len({str(v) for v in values if v is not None}),
        )

    rows = Counter(json.dumps(r, sort_keys=True, default=str) for r in data)
    duplicates = sum(count - 1 for count in rows.values())

    report = DataQualityReport(
        total_rows=len(data),
        total_features=len(features),
        null_count=total_nulls,
        duplicate_count=duplicates,
        feature_stats=stats,
    )
    logger.debug(
        "Data quality: %d rows, %d nulls, %d duplicates",
        report.total_rows, report.null_count, report.duplicate_count,
    )
    return report


# ── Cleaning / saving ─────────────────────────────────────────────────────────


def _fill_values(data: Sequence[Record], strategy: Any) -> dict[str, Any]:
    fills: dict[str, Any] = {}
    for feature in data[0]:
        present = [r.get(feature) for r in data if r.get(feature) is not None]
        if not present:
            fills[feature] = 0 if strategy == "mean" else ""
        elif strategy == "mean":
            numbers = [
                v for v in present
                if isinstance(v, (int, float)) and not isinstance(v, bool) and not math.isnan(v)
            ]
            fills[feature] = sum(numbers) / len(numbers) if numbers else present[0]
        elif strategy == "mode":
            first_seen: dict[str, Any] = {}
            for v in present:
                first_seen.setdefault(str(v), v)
            top, _ = Counter(str(v) for v in present).most_common(1)[0]
            fills[feature] = first_seen[top]
        else:
            fills[feature] = strategy
    return fills


def clean_data(
    data: Sequence[Record],
    remove_duplicates: bool = False,
    fill_nulls: Any = None,
    normalize_strings: bool = False,
) -> list[Record]:
    """Return a cleaned copy of ``data``; the input records are never mutated.

    Steps run in this order:

    1. ``remove_duplicates``: keep the first of identical records.
    2. ``fill_nulls``:
         ``"drop"``  drop records holding any null value
         ``"mean"``  numeric mean of the column (first value if none numeric)
         ``"mode"``  most frequent value, first seen wins ties
         other       used as the fill constant
       Fill values are computed per column of the first record; a column
       with no values fills with ``0`` for ``"mean"`` and ``""`` otherwise.
    3. ``normalize_strings``: strip and lowercase every string value.
    """
    cleaned = [dict(r) for r in data]
    logger.info("Cleaning %d rows", len(cleaned))

    if remove_duplicates:
        seen: set[str] = set()
        unique: list[Record] = []
        for record in cleaned:
            key = json.dumps(record, sort_keys=True, default=str)
            if key not in seen:
                seen.add(key)
                unique.append(record)
        logger.debug("Removed %d duplicate rows", len(cleaned) - len(unique))
        cleaned = unique

    if fill_nulls == "drop":
        cleaned = [r for r in cleaned if not any(v is None for v in r.values())]
    elif fill_nulls is not None and cleaned:
        fills = _fill_values(cleaned, fill_nulls)
        cleaned = [
            {k: (fills.get(k) if v is None else v) for k, v in r.items()}
            for r in cleaned
        ]

    if normalize_strings:
        cleaned = [
            {k: (v.strip().lower() if isinstance(v, str) else v) for k, v in r.items()}
            for r in cleaned
        ]

    logger.info(
        "Cleaning complete: %d rows kept, %d removed", len(cleaned), len(data) - len(cleaned)
    )
    return cleaned


def save_data(data: Sequence[Record], path: Path | str, format: str = "json") -> Path:
    """Write records as ``"json"`` (pretty-printed array) or ``"csv"``.

    CSV columns follow the keys of the first record; nulls are written as
    empty cells so ``load_csv`` reads them back as ``None``. Parent
    directories are created if missing.

    Returns:
        ``path`` as written.

    Raises:
        ValidationError: Unknown ``format``.
    """
    if format not in ("json", "csv"):
        raise ValidationError(f"Unsupported save format {format!r}; expected 'json' or 'csv'")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if format == "json":
        path.write_text(json.dumps(list(data), indent=2, default=str), encoding="utf-8")
    elif not data:
        path.write_text("", encoding="utf-8")
    else:
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=list(data[0]), extrasaction="ignore")
            writer.writeheader()
            writer.writerows(data)

    logger.info("Saved %d records to %s (%s)", len(data), path, format)
    return path
