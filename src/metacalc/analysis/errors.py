"""Exceptions raised by the meta-analysis engine."""

from enum import Enum


class ExclusionReason(str, Enum):
    """Why a study could not contribute to pooling."""

    NO_DATA = "no_data"
    MISSING_DATA = "missing_data"
    INVALID_VALUE = "invalid_value"
    MEASURE_MISMATCH = "measure_mismatch"
    UNDEFINED_MEASURE = "undefined_measure"
    USER_EXCLUDED = "user_excluded"


class MetaAnalysisError(Exception):
    """Base class for meta-analysis errors."""


class InsufficientDataError(MetaAnalysisError):
    """A single study lacks the data needed to compute its effect."""

    def __init__(
        self,
        study_id: str,
        reason: ExclusionReason,
        detail: str,
        fields: list[str] | None = None,
    ) -> None:
        self.study_id = study_id
        self.reason = reason
        self.detail = detail
        self.fields = fields or []
        super().__init__(f"Study {study_id}: {detail}")


class UndefinedMeasureError(InsufficientDataError):
    """Cell counts make the requested measure undefined (zero denominator or log of zero)."""

    def __init__(self, study_id: str, detail: str, fields: list[str] | None = None) -> None:
        super().__init__(study_id, ExclusionReason.UNDEFINED_MEASURE, detail, fields)


class InsufficientStudiesError(MetaAnalysisError):
    """Fewer than two computable studies remain for pooling."""

    def __init__(self, n_computable: int, excluded_ids: list[str] | None = None) -> None:
        self.n_computable = n_computable
        self.excluded_ids = excluded_ids or []
        message = f"Need at least 2 computable studies, got {n_computable}"
        if self.excluded_ids:
            message += f" (excluded: {', '.join(self.excluded_ids)})"
        super().__init__(message)


class NumericGuardError(MetaAnalysisError):
    """A pooling step produced a non-finite or negative quantity."""
