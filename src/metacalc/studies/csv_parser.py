"""CSV parser for importing meta-analysis study data.

Accepted columns (case-insensitive, surrounding whitespace ignored):

- identity: ``study`` or ``name``, ``year``, ``id``, ``subgroup``
- continuous: ``n1, mean1, sd1, n2, mean2, sd2``
- binary: ``events1, total1, events2, total2``
- pre-calculated: ``effect`` or ``yi``, ``se`` or ``sei``, ``ci_lower``, ``ci_upper``
- ``mode``: optional, one of continuous/binary/precalculated; inferred when absent
"""

import csv
import io
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from metacalc.models import (
    BINARY_FIELDS,
    CONTINUOUS_FIELDS,
    BinaryData,
    ContinuousData,
    PrecalculatedData,
    StudyRecord,
    infer_mode,
)

logger = logging.getLogger(__name__)

# Mapping of study fields to accepted column names
COLUMN_MAP = {
    "name": ["study", "name"],
    "effect": ["effect", "yi"],
    "se": ["se", "sei"],
}

INTEGER_FIELDS = {"n1", "n2", "events1", "total1", "events2", "total2"}
MODES = ("continuous", "binary", "precalculated")


class StudyImportError(ValueError):
    """A row could not be turned into a study."""

    def __init__(self, line: int, message: str) -> None:
        self.line = line
        super().__init__(f"Line {line}: {message}")


def _extract_field(row: dict[str, str], names: list[str]) -> str | None:
    """Extract a value from a row, trying multiple possible column names."""
    for name in names:
        value = row.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _parse_number(field: str, value: str | None, line: int) -> float | int | None:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        raise StudyImportError(line, f"{field} is not a number: {value!r}") from None
    if field in INTEGER_FIELDS:
        if not number.is_integer():
            raise StudyImportError(line, f"{field} must be a whole number: {value!r}")
        return int(number)
    return number


def _parse_year(value: str | None, line: int) -> int | None:
    if value is None:
        return None
    # Handle formats like "2023" and "2023.0"
    try:
        return int(float(value))
    except ValueError:
        raise StudyImportError(line, f"year is not a number: {value!r}") from None


def parse_study_row(row: dict[str, str], line: int, natural_scale: bool = False) -> StudyRecord:
    """
    Parse one row into a StudyRecord.

    Args:
        row: Column name to cell value, as read by csv.DictReader
        line: Line number used for the fallback name and in error messages
        natural_scale: Pre-calculated ratio effects are untransformed (e.g. OR, not lnOR)

    Returns:
        StudyRecord whose data variant matches the populated columns

    Raises:
        StudyImportError: If a value cannot be parsed
    """
    row = {key.strip().lower(): value for key, value in row.items() if key is not None and value is not None}

    fields: dict[str, float | int | None] = {}
    for field in CONTINUOUS_FIELDS + BINARY_FIELDS + ("ci_lower", "ci_upper"):
        fields[field] = _parse_number(field, _extract_field(row, [field]), line)
    for field in ("effect", "se"):
        fields[field] = _parse_number(field, _extract_field(row, COLUMN_MAP[field]), line)

    mode = _extract_field(row, ["mode"])
    if mode is not None:
        mode = mode.lower()
        if mode not in MODES:
            raise StudyImportError(line, f"unknown mode {mode!r}")
    else:
        mode = infer_mode(fields)

    data: ContinuousData | BinaryData | PrecalculatedData | None
    if mode == "continuous":
        data = ContinuousData(**{f: fields[f] for f in CONTINUOUS_FIELDS})
    elif mode == "binary":
        data = BinaryData(**{f: fields[f] for f in BINARY_FIELDS})
    elif mode == "precalculated":
        data = PrecalculatedData(
            effect=fields["effect"],
            se=fields["se"],
            ci_lower=fields["ci_lower"],
            ci_upper=fields["ci_upper"],
            natural_scale=natural_scale,
        )
    else:
        data = None

    identity: dict[str, object] = {
        "name": _extract_field(row, COLUMN_MAP["name"]) or f"Study {line}",
        "year": _parse_year(_extract_field(row, ["year"]), line),
        "subgroup": _extract_field(row, ["subgroup"]),
        "data": data,
    }
    study_id = _extract_field(row, ["id"])
    if study_id:
        identity["id"] = study_id

    try:
        return StudyRecord(**identity)
    except ValidationError as e:
        raise StudyImportError(line, str(e)) from e


def parse_study_rows(rows: Iterable[dict[str, str]], natural_scale: bool = False) -> list[StudyRecord]:
    """Parse data rows in order, skipping blank ones. Line numbers assume a header on line 1."""
    studies = []
    for line, row in enumerate(rows, start=2):
        if not any(value and value.strip() for value in row.values() if isinstance(value, str)):
            continue
        studies.append(parse_study_row(row, line, natural_scale=natural_scale))
    return studies


def parse_csv_file(path: Path, natural_scale: bool = False) -> list[StudyRecord]:
    """
    Parse a CSV file of study rows.

    Args:
        path: Path to the CSV file
        natural_scale: Pre-calculated ratio effects are untransformed

    Returns:
        List of StudyRecord objects in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        StudyImportError: If a row cannot be parsed
    """
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    logger.info("Parsing study CSV: %s", path)

    with open(path, encoding="utf-8-sig", newline="") as f:
        studies = parse_study_rows(csv.DictReader(f), natural_scale)

    logger.info("Parsed %d studies from CSV", len(studies))
    return studies


def parse_csv_string(content: str, natural_scale: bool = False) -> list[StudyRecord]:
    """
    Parse study rows from CSV content in a string.

    Args:
        content: CSV content including the header row

    Returns:
        List of StudyRecord objects
    """
    return parse_study_rows(csv.DictReader(io.StringIO(content)), natural_scale)
