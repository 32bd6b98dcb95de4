"""Analysis sessions: a study list, its configuration and cached results."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from metacalc.analysis.heterogeneity import SubgroupTest, subgroup_difference
from metacalc.analysis.statistics import AnalysisReport, run_analysis
from metacalc.models import EffectMeasure, PoolingMethod, SessionFile, StudyRecord

logger = logging.getLogger(__name__)

MAIN_KEY = "main"
SUBGROUP_PREFIX = "subgroup:"
SENSITIVITY_PREFIX = "sensitivity:"


def subgroup_key(name: str) -> str:
    return f"{SUBGROUP_PREFIX}{name}"


def sensitivity_key(study_id: str) -> str:
    return f"{SENSITIVITY_PREFIX}{study_id}"


@dataclass(frozen=True)
class SubgroupAnalysis:
    """Per-subgroup reports and the test for differences between them."""

    reports: dict[str, AnalysisReport]
    test: SubgroupTest | None


class AnalysisSession:
    """Holds the studies of one meta-analysis and caches its results.

    Results are cached per analysis key (``main``, ``subgroup:<name>``,
    ``sensitivity:<study id>``). Every mutation drops the entries it could
    affect before returning, and a re-entrant lock makes mutations and
    analyses mutually exclusive, so a cached report always reflects a
    complete study list.
    """

    def __init__(
        self,
        name: str = "Untitled analysis",
        measure: EffectMeasure = EffectMeasure.SMD,
        method: PoolingMethod = PoolingMethod.RANDOM,
        studies: list[StudyRecord] | None = None,
        z_crit: float = 1.96,
    ) -> None:
        self.name = name
        self.z_crit = z_crit
        self._measure = measure
        self._method = method
        self._studies: list[StudyRecord] = []
        self._cache: dict[str, AnalysisReport] = {}
        self._lock = threading.RLock()

        for study in studies or []:
            self.add_study(study)

    # Configuration
    @property
    def measure(self) -> EffectMeasure:
        return self._measure

    @property
    def method(self) -> PoolingMethod:
        return self._method

    def set_measure(self, measure: EffectMeasure) -> None:
        with self._lock:
            if measure != self._measure:
                self._measure = measure
                self._clear_cache()

    def set_method(self, method: PoolingMethod) -> None:
        with self._lock:
            if method != self._method:
                self._method = method
                self._clear_cache()

    # Study list
    @property
    def studies(self) -> list[StudyRecord]:
        """Snapshot of the study list in input order."""
        with self._lock:
            return list(self._studies)

    def get_study(self, study_id: str) -> StudyRecord:
        with self._lock:
            return self._studies[self._index(study_id)]

    def _index(self, study_id: str) -> int:
        for i, study in enumerate(self._studies):
            if study.id == study_id:
                return i
        raise KeyError(f"Study not found: {study_id}")

    def add_study(self, study: StudyRecord) -> StudyRecord:
        """Append a study; its id must be new to the session."""
        with self._lock:
            if any(s.id == study.id for s in self._studies):
                raise ValueError(f"Study already in session: {study.id}")
            self._studies.append(study)
            self._invalidate({study.subgroup})
            return study

    def update_study(self, study_id: str, **changes: Any) -> StudyRecord:
        """
        Replace fields of a study, validating the result.

        Args:
            study_id: Study to edit
            **changes: StudyRecord fields to replace (``id`` cannot change)

        Returns:
            The updated StudyRecord
        """
        if "id" in changes and changes["id"] != study_id:
            raise ValueError("Study id cannot be changed")

        with self._lock:
            index = self._index(study_id)
            old = self._studies[index]
            merged = old.model_dump()
            merged.update(changes)
            updated = StudyRecord.model_validate(merged)
            self._studies[index] = updated
            self._invalidate({old.subgroup, updated.subgroup})
            return updated

    def remove_study(self, study_id: str) -> StudyRecord:
        with self._lock:
            removed = self._studies.pop(self._index(study_id))
            self._invalidate({removed.subgroup})
            return removed

    def set_excluded(self, study_id: str, excluded: bool = True) -> StudyRecord:
        """Exclude a study from pooling (or re-include it) without removing it."""
        return self.update_study(study_id, excluded=excluded)

    def subgroup_names(self) -> list[str]:
        """Distinct subgroup labels in order of first appearance."""
        with self._lock:
            names: list[str] = []
            for study in self._studies:
                if study.subgroup is not None and study.subgroup not in names:
                    names.append(study.subgroup)
            return names

    # Cache
    def cached_keys(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    def _clear_cache(self) -> None:
        logger.debug("Session %s: clearing %d cached results", self.name, len(self._cache))
        self._cache.clear()

    def _invalidate(self, subgroups: set[str | None]) -> None:
        """Drop results that depend on studies in the given subgroups.

        ``main`` and every sensitivity analysis cover all studies, so they
        always go.
        """
        stale = [
            key
            for key in self._cache
            if key == MAIN_KEY
            or key.startswith(SENSITIVITY_PREFIX)
            or (key.startswith(SUBGROUP_PREFIX) and key[len(SUBGROUP_PREFIX) :] in subgroups)
        ]
        for key in stale:
            del self._cache[key]
        if stale:
            logger.debug("Session %s: invalidated %s", self.name, ", ".join(stale))

    # Analysis
    def _studies_for(self, key: str) -> list[StudyRecord]:
        if key == MAIN_KEY:
            return list(self._studies)
        if key.startswith(SUBGROUP_PREFIX):
            name = key[len(SUBGROUP_PREFIX) :]
            return [s for s in self._studies if s.subgroup == name]
        if key.startswith(SENSITIVITY_PREFIX):
            excluded_id = key[len(SENSITIVITY_PREFIX) :]
            self._index(excluded_id)
            return [s for s in self._studies if s.id != excluded_id]
        raise ValueError(f"Unknown analysis key: {key}")

    def analyze(self, key: str = MAIN_KEY) -> AnalysisReport:
        """
        Return the report for an analysis key, computing it if not cached.

        Raises:
            KeyError: If a sensitivity key names an unknown study
            ValueError: If the key has an unknown form
            NumericGuardError: If pooling produces non-finite values (not cached)
        """
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            report = run_analysis(self._studies_for(key), self._measure, self._method, key=key, z_crit=self.z_crit)
            self._cache[key] = report
            return report

    def analyze_subgroup(self, name: str) -> AnalysisReport:
        return self.analyze(subgroup_key(name))

    def analyze_sensitivity(self, study_id: str) -> AnalysisReport:
        """Analysis with one study left out."""
        return self.analyze(sensitivity_key(study_id))

    def subgroup_analysis(self) -> SubgroupAnalysis:
        """Pool each subgroup separately and test for differences between them."""
        with self._lock:
            reports = {name: self.analyze_subgroup(name) for name in self.subgroup_names()}

        pooled = [r.pooled for r in reports.values() if r.pooled is not None]
        test = None
        if len(pooled) >= 2:
            test = subgroup_difference([p.pooled_effect for p in pooled], [p.pooled_se for p in pooled])
        return SubgroupAnalysis(reports=reports, test=test)

    def leave_one_out(self) -> dict[str, AnalysisReport]:
        """Sensitivity analysis dropping each non-excluded study in turn."""
        with self._lock:
            return {s.id: self.analyze_sensitivity(s.id) for s in self._studies if not s.excluded}

    # Persistence
    def to_file(self) -> SessionFile:
        with self._lock:
            return SessionFile(name=self.name, measure=self._measure, method=self._method, studies=list(self._studies))

    @classmethod
    def from_file(cls, session_file: SessionFile, z_crit: float = 1.96) -> "AnalysisSession":
        return cls(
            name=session_file.name,
            measure=session_file.measure,
            method=session_file.method,
            studies=session_file.studies,
            z_crit=z_crit,
        )

    def save_yaml(self, path: Path) -> None:
        self.to_file().to_yaml(path)

    @classmethod
    def load_yaml(cls, path: Path, z_crit: float = 1.96) -> "AnalysisSession":
        return cls.from_file(SessionFile.from_yaml(path), z_crit=z_crit)
