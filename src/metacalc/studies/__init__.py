"""Study import from tabular sources."""

from metacalc.studies.csv_parser import (
    StudyImportError,
    parse_csv_file,
    parse_csv_string,
    parse_study_row,
    parse_study_rows,
)

__all__ = ["StudyImportError", "parse_csv_file", "parse_csv_string", "parse_study_row", "parse_study_rows"]
