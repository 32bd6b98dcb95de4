"""Tests for normalizing raw study data into canonical effects."""

import math

import pytest

from metacalc.analysis.errors import ExclusionReason, InsufficientDataError, UndefinedMeasureError
from metacalc.analysis.normalizer import normalize_studies, normalize_study
from metacalc.models import BinaryData, ContinuousData, EffectMeasure, PrecalculatedData, StudyRecord


class TestNormalizeStudy:
    """Tests for single-study normalization."""

    def test_continuous_smd(self, continuous_study: StudyRecord) -> None:
        """Test that continuous data yields Hedges' g on a linear scale."""
        effect = normalize_study(continuous_study, EffectMeasure.SMD)
        assert effect.study_id == "smith"
        assert effect.name == "Smith (2020)"
        assert not effect.log_scale
        assert effect.effect == pytest.approx(0.779, abs=1e-3)

    def test_binary_odds_ratio_is_log_scale(self, binary_study: StudyRecord) -> None:
        """Test that ratio measures are stored as logs."""
        effect = normalize_study(binary_study, EffectMeasure.OR)
        assert effect.log_scale
        assert effect.effect == pytest.approx(math.log(2.142857), rel=1e-6)

    def test_precalculated_passes_through(self, precalculated_study: StudyRecord) -> None:
        """Test that a pre-calculated effect and SE are used unchanged."""
        effect = normalize_study(precalculated_study, EffectMeasure.SMD)
        assert effect.effect == 0.45
        assert effect.se == 0.12
        assert effect.variance == pytest.approx(0.0144)

    def test_precalculated_ratio_given_as_log(self) -> None:
        """Test that ratio effects default to the log scale."""
        study = StudyRecord(name="HR study", data=PrecalculatedData(effect=-0.2, se=0.1))
        effect = normalize_study(study, EffectMeasure.HR)
        assert effect.log_scale
        assert effect.effect == -0.2
        assert effect.estimate.natural() == pytest.approx(math.exp(-0.2))

    def test_precalculated_natural_scale_ratio(self) -> None:
        """Test that natural-scale ratios and their CI are logged."""
        study = StudyRecord(
            name="OR study",
            data=PrecalculatedData(effect=2.0, ci_lower=1.0, ci_upper=4.0, natural_scale=True),
        )
        effect = normalize_study(study, EffectMeasure.OR)
        assert effect.effect == pytest.approx(math.log(2.0))
        assert effect.se == pytest.approx((math.log(4.0) - math.log(1.0)) / (2 * 1.96))

    def test_se_derived_from_ci(self) -> None:
        """Test SE = (upper - lower) / (2 z) when only a CI is given."""
        study = StudyRecord(name="CI only", data=PrecalculatedData(effect=0.5, ci_lower=0.108, ci_upper=0.892))
        effect = normalize_study(study, EffectMeasure.MD)
        assert effect.se == pytest.approx(0.2)

    def test_natural_scale_rejects_non_positive(self) -> None:
        """Test that a non-positive ratio cannot be logged."""
        study = StudyRecord(name="Bad", data=PrecalculatedData(effect=0.0, se=0.2, natural_scale=True))
        with pytest.raises(InsufficientDataError) as exc_info:
            normalize_study(study, EffectMeasure.RR)
        assert exc_info.value.reason == ExclusionReason.INVALID_VALUE

    def test_zero_total_is_insufficient(self) -> None:
        """Test that total1 = 0 is reported as insufficient data."""
        study = StudyRecord(name="Empty arm", data=BinaryData(events1=0, total1=0, events2=5, total2=40))
        with pytest.raises(InsufficientDataError) as exc_info:
            normalize_study(study, EffectMeasure.OR)
        assert "total1" in exc_info.value.fields

    def test_zero_events_is_undefined_measure(self) -> None:
        """Test that zero cells surface as an undefined measure."""
        study = StudyRecord(name="No events", data=BinaryData(events1=0, total1=40, events2=5, total2=40))
        with pytest.raises(UndefinedMeasureError):
            normalize_study(study, EffectMeasure.OR)

    def test_missing_fields(self) -> None:
        """Test that missing continuous fields are named."""
        study = StudyRecord(name="Partial", data=ContinuousData(n1=20, mean1=5.0, n2=20, mean2=4.0, sd2=1.0))
        with pytest.raises(InsufficientDataError) as exc_info:
            normalize_study(study, EffectMeasure.MD)
        assert exc_info.value.reason == ExclusionReason.MISSING_DATA
        assert exc_info.value.fields == ["sd1"]

    def test_measure_mismatch(self, continuous_study: StudyRecord) -> None:
        """Test that continuous data cannot produce an odds ratio."""
        with pytest.raises(InsufficientDataError) as exc_info:
            normalize_study(continuous_study, EffectMeasure.OR)
        assert exc_info.value.reason == ExclusionReason.MEASURE_MISMATCH

    def test_no_data(self) -> None:
        """Test a study with nothing entered."""
        with pytest.raises(InsufficientDataError) as exc_info:
            normalize_study(StudyRecord(name="Blank"), EffectMeasure.SMD)
        assert exc_info.value.reason == ExclusionReason.NO_DATA

    def test_non_positive_sd(self) -> None:
        """Test that a zero standard deviation is invalid."""
        study = StudyRecord(
            name="Zero SD", data=ContinuousData(n1=20, mean1=5.0, sd1=0.0, n2=20, mean2=4.0, sd2=1.0)
        )
        with pytest.raises(InsufficientDataError) as exc_info:
            normalize_study(study, EffectMeasure.SMD)
        assert exc_info.value.fields == ["sd1"]


class TestNormalizeStudies:
    """Tests for normalizing a study list."""

    def test_collects_exclusions(
        self, continuous_study: StudyRecord, binary_study: StudyRecord, precalculated_study: StudyRecord
    ) -> None:
        """Test that failures become exclusions and input order is kept."""
        studies = [continuous_study, binary_study, precalculated_study]
        effects, exclusions = normalize_studies(studies, EffectMeasure.SMD)
        assert [e.study_id for e in effects] == ["smith", "lee"]
        assert len(exclusions) == 1
        assert exclusions[0].study_id == "jones"
        assert exclusions[0].reason == ExclusionReason.MEASURE_MISMATCH

    def test_user_excluded(self, precalculated_study: StudyRecord) -> None:
        """Test that manually excluded studies are skipped with their own reason."""
        study = precalculated_study.model_copy(update={"excluded": True})
        effects, exclusions = normalize_studies([study], EffectMeasure.SMD)
        assert effects == []
        assert exclusions[0].reason == ExclusionReason.USER_EXCLUDED
