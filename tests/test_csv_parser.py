"""Tests for study CSV import."""

from pathlib import Path

import pytest

from metacalc.models import BinaryData, ContinuousData, PrecalculatedData
from metacalc.studies.csv_parser import (
    StudyImportError,
    parse_csv_file,
    parse_csv_string,
    parse_study_row,
)


class TestParseStudyRow:
    """Tests for single-row parsing."""

    def test_continuous_row(self) -> None:
        """Test a continuous row with integer sample sizes."""
        row = {
            "study": "Smith",
            "year": "2020",
            "n1": "50",
            "mean1": "12.5",
            "sd1": "3.2",
            "n2": "48",
            "mean2": "10.1",
            "sd2": "2.9",
        }
        study = parse_study_row(row, 2)
        assert study.name == "Smith"
        assert study.year == 2020
        assert isinstance(study.data, ContinuousData)
        assert study.data.n1 == 50
        assert study.data.sd2 == 2.9

    def test_aliases(self) -> None:
        """Test name / yi / sei column aliases."""
        study = parse_study_row({"name": "Lee", "yi": "0.45", "sei": "0.12"}, 3)
        assert study.name == "Lee"
        assert isinstance(study.data, PrecalculatedData)
        assert study.data.effect == 0.45
        assert study.data.se == 0.12

    def test_headers_are_case_insensitive(self) -> None:
        """Test mixed-case headers with surrounding spaces."""
        row = {" Study ": "Jones", "Events1": "15", "TOTAL1": "50", "events2": "8", "total2": "48"}
        study = parse_study_row(row, 2)
        assert study.name == "Jones"
        assert isinstance(study.data, BinaryData)
        assert study.data.total1 == 50

    def test_default_name(self) -> None:
        """Test the fallback name uses the line number."""
        study = parse_study_row({"effect": "0.2", "se": "0.1"}, 7)
        assert study.name == "Study 7"

    def test_explicit_mode(self) -> None:
        """Test that a mode column overrides inference."""
        study = parse_study_row({"study": "X", "mode": "Binary", "events1": "4"}, 2)
        assert isinstance(study.data, BinaryData)
        assert study.data.total1 is None

    def test_id_and_subgroup(self) -> None:
        """Test optional identity columns."""
        study = parse_study_row({"id": "s-1", "study": "X", "subgroup": "adults", "effect": "1", "se": "1"}, 2)
        assert study.id == "s-1"
        assert study.subgroup == "adults"

    def test_natural_scale_flag(self) -> None:
        """Test that pre-calculated rows carry the natural-scale flag."""
        study = parse_study_row({"effect": "2.1", "ci_lower": "1.2", "ci_upper": "3.6"}, 2, natural_scale=True)
        assert isinstance(study.data, PrecalculatedData)
        assert study.data.natural_scale

    def test_no_data(self) -> None:
        """Test a row with only identity columns."""
        assert parse_study_row({"study": "Empty", "year": "2001"}, 2).data is None

    def test_bad_number(self) -> None:
        """Test that an unparseable value names its line."""
        with pytest.raises(StudyImportError) as exc_info:
            parse_study_row({"study": "Bad", "n1": "fifty"}, 4)
        assert exc_info.value.line == 4
        assert "n1" in str(exc_info.value)

    def test_fractional_count(self) -> None:
        """Test that counts must be whole numbers."""
        with pytest.raises(StudyImportError):
            parse_study_row({"events1": "2.5", "total1": "10"}, 2)

    def test_unknown_mode(self) -> None:
        """Test an unsupported mode value."""
        with pytest.raises(StudyImportError):
            parse_study_row({"mode": "survival"}, 2)


class TestParseCsv:
    """Tests for whole-file parsing."""

    def test_parse_string(self, study_csv: str) -> None:
        """Test one row of each shape."""
        studies = parse_csv_string(study_csv)
        assert [s.mode for s in studies] == ["continuous", "binary", "precalculated"]
        assert [s.subgroup for s in studies] == ["adults", "children", "adults"]

    def test_blank_rows_skipped(self) -> None:
        """Test that empty lines and all-blank rows are ignored."""
        studies = parse_csv_string("study,effect,se\nA,0.1,0.2\n,,\nB,0.3,0.1\n")
        assert [s.name for s in studies] == ["A", "B"]

    def test_error_line_number(self) -> None:
        """Test that line numbers count the header."""
        with pytest.raises(StudyImportError) as exc_info:
            parse_csv_string("study,effect,se\nA,0.1,0.2\nB,oops,0.1\n")
        assert exc_info.value.line == 3

    def test_parse_file(self, study_csv: str, temp_dir: Path) -> None:
        """Test parsing from a file."""
        path = temp_dir / "studies.csv"
        path.write_text(study_csv)
        assert len(parse_csv_file(path)) == 3

    def test_missing_file(self, temp_dir: Path) -> None:
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            parse_csv_file(temp_dir / "nope.csv")
