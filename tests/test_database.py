"""Tests for SQLite session storage."""

from collections.abc import Generator
from pathlib import Path

import pytest

from metacalc.analysis.session import AnalysisSession
from metacalc.database import Database
from metacalc.models import EffectMeasure, PoolingMethod, PrecalculatedData, StudyRecord


@pytest.fixture
def db(temp_dir: Path) -> Generator[Database]:
    """A database in a temporary directory."""
    database = Database(temp_dir / "nested" / "meta.db")
    yield database
    database.close()


@pytest.fixture
def mixed_session(
    continuous_study: StudyRecord, binary_study: StudyRecord, precalculated_study: StudyRecord
) -> AnalysisSession:
    """A session holding one study of each input mode plus one without data."""
    natural = StudyRecord(
        id="nat",
        name="Natural",
        subgroup="adults",
        excluded=True,
        data=PrecalculatedData(effect=1.8, ci_lower=1.1, ci_upper=2.9, natural_scale=True),
    )
    blank = StudyRecord(id="blank", name="Blank")
    return AnalysisSession(
        name="Mixed",
        measure=EffectMeasure.MD,
        method=PoolingMethod.FIXED,
        studies=[continuous_study, binary_study, precalculated_study, natural, blank],
    )


class TestSessions:
    """Tests for storing and loading sessions."""

    def test_round_trip(self, db: Database, mixed_session: AnalysisSession) -> None:
        """Test that every study and setting survives storage."""
        session_id = db.save_session(mixed_session)
        loaded = db.load_session(session_id)

        assert loaded.name == "Mixed"
        assert loaded.measure == EffectMeasure.MD
        assert loaded.method == PoolingMethod.FIXED
        assert loaded.studies == mixed_session.studies

    def test_save_replaces_by_name(self, db: Database, precalculated_studies: list[StudyRecord]) -> None:
        """Test that saving a session again replaces its studies."""
        session = AnalysisSession(name="Repeat", studies=precalculated_studies)
        first_id = db.save_session(session)
        session.remove_study("d")
        second_id = db.save_session(session)

        assert first_id == second_id
        assert [s.id for s in db.get_studies(first_id)] == ["a", "b", "c"]
        assert len(db.list_sessions()) == 1

    def test_list_sessions(self, db: Database, precalculated_studies: list[StudyRecord]) -> None:
        """Test session listing with study counts."""
        db.save_session(AnalysisSession(name="One", studies=precalculated_studies))
        db.save_session(AnalysisSession(name="Two"))

        sessions = {s["name"]: s for s in db.list_sessions()}
        assert sessions["One"]["n_studies"] == 4
        assert sessions["Two"]["n_studies"] == 0
        assert sessions["One"]["effect_measure"] == "SMD"

    def test_load_missing(self, db: Database) -> None:
        """Test loading a session that doesn't exist."""
        with pytest.raises(ValueError):
            db.load_session(999)

    def test_delete_session(self, db: Database, precalculated_studies: list[StudyRecord]) -> None:
        """Test that deleting a session removes its studies."""
        session_id = db.save_session(AnalysisSession(name="Gone", studies=precalculated_studies))
        db.delete_session(session_id)
        assert db.get_session(session_id) is None
        assert db.get_studies(session_id) == []

    def test_schema_has_study_flags(self, db: Database) -> None:
        """Test that a fresh database stores the natural-scale and exclusion flags."""
        columns = {row[1] for row in db.conn.execute("PRAGMA table_info(meta_studies)")}
        assert {"natural_scale", "excluded"} <= columns


class TestResults:
    """Tests for stored pooled results."""

    def test_save_and_get_result(self, db: Database, precalculated_studies: list[StudyRecord]) -> None:
        """Test that a pooled result is stored under its analysis key."""
        session = AnalysisSession(name="Results", studies=precalculated_studies)
        session_id = db.save_session(session)
        report = session.analyze()
        db.save_result(session_id, report)

        stored = db.get_result(session_id, "main")
        assert stored is not None
        assert report.pooled is not None
        assert stored["pooled_effect"] == pytest.approx(report.pooled.pooled_effect)
        assert stored["i2"] == pytest.approx(report.pooled.i_squared)
        assert stored["q_df"] == 3
        assert stored["weights"] == pytest.approx(dict(report.pooled.weights))

    def test_result_replaced(self, db: Database, precalculated_studies: list[StudyRecord]) -> None:
        """Test that one row is kept per analysis key."""
        session = AnalysisSession(name="Again", studies=precalculated_studies)
        session_id = db.save_session(session)
        db.save_result(session_id, session.analyze())
        session.set_method(PoolingMethod.FIXED)
        db.save_result(session_id, session.analyze())
        db.save_result(session_id, session.analyze_subgroup("adults"))

        results = db.get_results(session_id)
        assert [r["analysis_type"] for r in results] == ["main", "subgroup:adults"]

    def test_resave_clears_results(self, db: Database, precalculated_studies: list[StudyRecord]) -> None:
        """Test that saving the studies again drops stale results."""
        session = AnalysisSession(name="Stale", studies=precalculated_studies)
        session_id = db.save_session(session)
        db.save_result(session_id, session.analyze())
        db.save_session(session)
        assert db.get_result(session_id) is None

    def test_unpooled_report_not_saved(self, db: Database, precalculated_study: StudyRecord) -> None:
        """Test that an insufficient-studies report stores nothing."""
        session = AnalysisSession(name="Small", studies=[precalculated_study])
        session_id = db.save_session(session)
        db.save_result(session_id, session.analyze())
        assert db.get_results(session_id) == []
