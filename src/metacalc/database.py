"""SQLite database persistence layer for meta-analysis sessions."""

import json
import logging
import sqlite3
from pathlib import Path

from metacalc.analysis.session import AnalysisSession
from metacalc.analysis.statistics import AnalysisReport
from metacalc.models import (
    BINARY_FIELDS,
    CONTINUOUS_FIELDS,
    PRECALCULATED_FIELDS,
    EffectMeasure,
    PoolingMethod,
    StudyRecord,
)

logger = logging.getLogger(__name__)

SCHEMA = """
-- Analysis sessions
CREATE TABLE IF NOT EXISTS meta_sessions (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    effect_measure TEXT NOT NULL,
    pooling_method TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Studies, one row per study in session order
CREATE TABLE IF NOT EXISTS meta_studies (
    id INTEGER PRIMARY KEY,
    session_id INTEGER REFERENCES meta_sessions(id) ON DELETE CASCADE,
    study_key TEXT NOT NULL,
    position INTEGER NOT NULL,
    name TEXT NOT NULL,
    year INTEGER,
    subgroup TEXT,
    mode TEXT CHECK(mode IN ('continuous', 'binary', 'precalculated')),
    -- Continuous data
    n1 INTEGER,
    mean1 REAL,
    sd1 REAL,
    n2 INTEGER,
    mean2 REAL,
    sd2 REAL,
    -- Binary data
    events1 INTEGER,
    total1 INTEGER,
    events2 INTEGER,
    total2 INTEGER,
    -- Pre-calculated
    effect REAL,
    se REAL,
    ci_lower REAL,
    ci_upper REAL,
    natural_scale BOOLEAN DEFAULT 0,
    -- Listed but left out of pooling
    excluded BOOLEAN DEFAULT 0,
    UNIQUE(session_id, study_key)
);

-- Pooled results, one row per analysis key
CREATE TABLE IF NOT EXISTS meta_results (
    id INTEGER PRIMARY KEY,
    session_id INTEGER REFERENCES meta_sessions(id) ON DELETE CASCADE,
    analysis_type TEXT NOT NULL,
    pooled_effect REAL,
    pooled_se REAL,
    ci_lower REAL,
    ci_upper REAL,
    z_stat REAL,
    p_value REAL,
    q_stat REAL,
    q_df INTEGER,
    q_pvalue REAL,
    i2 REAL,
    tau2 REAL,
    weights TEXT,
    calculated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(session_id, analysis_type)
);

CREATE INDEX IF NOT EXISTS idx_meta_studies_session ON meta_studies(session_id);
CREATE INDEX IF NOT EXISTS idx_meta_results_session ON meta_results(session_id);
"""

FIELDS_BY_MODE = {
    "continuous": CONTINUOUS_FIELDS,
    "binary": BINARY_FIELDS,
    "precalculated": PRECALCULATED_FIELDS,
}
DATA_COLUMNS = CONTINUOUS_FIELDS + BINARY_FIELDS + PRECALCULATED_FIELDS


class Database:
    """SQLite database manager for meta-analysis sessions."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the database connection."""
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Get the database connection, creating it if necessary."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        """Initialize the database schema."""
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # Session operations
    def create_session(self, name: str, measure: EffectMeasure, method: PoolingMethod) -> int:
        """Create a new session and return its ID."""
        cursor = self.conn.execute(
            "INSERT INTO meta_sessions (name, effect_measure, pooling_method) VALUES (?, ?, ?)",
            (name, measure.value, method.value),
        )
        self.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    def get_session(self, session_id: int) -> dict | None:
        """Get a session row by ID."""
        cursor = self.conn.execute("SELECT * FROM meta_sessions WHERE id = ?", (session_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_session_by_name(self, name: str) -> dict | None:
        """Get a session row by name."""
        cursor = self.conn.execute("SELECT * FROM meta_sessions WHERE name = ?", (name,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def list_sessions(self) -> list[dict]:
        """List all sessions with their study counts."""
        cursor = self.conn.execute(
            """SELECT s.*, COUNT(st.id) AS n_studies FROM meta_sessions s
               LEFT JOIN meta_studies st ON st.session_id = s.id
               GROUP BY s.id
               ORDER BY s.updated_at DESC, s.id DESC"""
        )
        return [dict(row) for row in cursor.fetchall()]

    def delete_session(self, session_id: int) -> None:
        """Delete a session with its studies and results."""
        self.conn.execute("DELETE FROM meta_sessions WHERE id = ?", (session_id,))
        self.conn.commit()

    # Study operations
    def save_studies(self, session_id: int, studies: list[StudyRecord]) -> None:
        """Replace the stored studies of a session, keeping list order."""
        self.conn.execute("DELETE FROM meta_studies WHERE session_id = ?", (session_id,))
        for position, study in enumerate(studies):
            values = dict.fromkeys(DATA_COLUMNS)
            natural_scale = False
            if study.data is not None:
                for field in FIELDS_BY_MODE[study.data.mode]:
                    values[field] = getattr(study.data, field)
                natural_scale = getattr(study.data, "natural_scale", False)

            columns = ["session_id", "study_key", "position", "name", "year", "subgroup", "mode"]
            columns += list(DATA_COLUMNS) + ["natural_scale", "excluded"]
            params = [session_id, study.id, position, study.name, study.year, study.subgroup, study.mode]
            params += [values[field] for field in DATA_COLUMNS] + [natural_scale, study.excluded]

            placeholders = ", ".join("?" for _ in columns)
            self.conn.execute(
                f"INSERT INTO meta_studies ({', '.join(columns)}) VALUES ({placeholders})",
                params,
            )
        self.conn.commit()

    def get_studies(self, session_id: int) -> list[StudyRecord]:
        """Get the studies of a session in their stored order."""
        cursor = self.conn.execute(
            "SELECT * FROM meta_studies WHERE session_id = ? ORDER BY position",
            (session_id,),
        )
        return [self._row_to_study(row) for row in cursor.fetchall()]

    def _row_to_study(self, row: sqlite3.Row) -> StudyRecord:
        """Convert a database row to a StudyRecord."""
        data = dict(row)
        mode = data["mode"]
        study_data = None
        if mode is not None:
            study_data = {field: data[field] for field in FIELDS_BY_MODE[mode]}
            study_data["mode"] = mode
            if mode == "precalculated":
                study_data["natural_scale"] = bool(data.get("natural_scale"))

        return StudyRecord(
            id=data["study_key"],
            name=data["name"],
            year=data["year"],
            subgroup=data["subgroup"],
            data=study_data,
            excluded=bool(data.get("excluded")),
        )

    # Result operations
    def save_result(self, session_id: int, report: AnalysisReport) -> None:
        """Store the pooled result of a report under its analysis key."""
        pooled = report.pooled
        if pooled is None:
            logger.warning("Analysis %s has no pooled result to save", report.key)
            return

        self.conn.execute(
            """INSERT OR REPLACE INTO meta_results
               (session_id, analysis_type, pooled_effect, pooled_se, ci_lower, ci_upper, z_stat, p_value,
                q_stat, q_df, q_pvalue, i2, tau2, weights)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                session_id,
                report.key,
                pooled.pooled_effect,
                pooled.pooled_se,
                pooled.ci_lower,
                pooled.ci_upper,
                pooled.z_statistic,
                pooled.p_value,
                pooled.q,
                pooled.df,
                pooled.q_p_value,
                pooled.i_squared,
                pooled.tau_squared,
                json.dumps(dict(pooled.weights)),
            ),
        )
        self.conn.commit()

    def get_result(self, session_id: int, analysis_type: str = "main") -> dict | None:
        """Get a stored result, with weights decoded."""
        cursor = self.conn.execute(
            "SELECT * FROM meta_results WHERE session_id = ? AND analysis_type = ?",
            (session_id, analysis_type),
        )
        row = cursor.fetchone()
        if not row:
            return None
        data = dict(row)
        data["weights"] = json.loads(data["weights"]) if data["weights"] else {}
        return data

    def get_results(self, session_id: int) -> list[dict]:
        """Get all stored results of a session."""
        cursor = self.conn.execute(
            "SELECT analysis_type FROM meta_results WHERE session_id = ? ORDER BY analysis_type",
            (session_id,),
        )
        results = []
        for row in cursor.fetchall():
            result = self.get_result(session_id, row["analysis_type"])
            if result:
                results.append(result)
        return results

    def clear_results(self, session_id: int) -> None:
        """Drop stored results, e.g. after the studies changed."""
        self.conn.execute("DELETE FROM meta_results WHERE session_id = ?", (session_id,))
        self.conn.commit()

    # Whole sessions
    def save_session(self, session: AnalysisSession) -> int:
        """
        Save a session, replacing any stored session of the same name.

        Stored results are cleared because they may describe the old studies.

        Returns:
            ID of the stored session
        """
        existing = self.get_session_by_name(session.name)
        if existing:
            session_id = existing["id"]
            self.conn.execute(
                """UPDATE meta_sessions SET effect_measure = ?, pooling_method = ?,
                   updated_at = CURRENT_TIMESTAMP WHERE id = ?""",
                (session.measure.value, session.method.value, session_id),
            )
            self.clear_results(session_id)
        else:
            session_id = self.create_session(session.name, session.measure, session.method)

        self.save_studies(session_id, session.studies)
        logger.info("Saved session %s (%d studies)", session.name, len(session.studies))
        return session_id

    def load_session(self, session_id: int, z_crit: float = 1.96) -> AnalysisSession:
        """
        Load a stored session.

        Raises:
            ValueError: If the session doesn't exist
        """
        row = self.get_session(session_id)
        if not row:
            raise ValueError(f"Session not found: {session_id}")

        return AnalysisSession(
            name=row["name"],
            measure=EffectMeasure(row["effect_measure"]),
            method=PoolingMethod(row["pooling_method"]),
            studies=self.get_studies(session_id),
            z_crit=z_crit,
        )
