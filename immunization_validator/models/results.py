"""
Tri-state result algebra.

Every condition check answers SATISFIED, NOT_SATISFIED or UNDETERMINED.
UNDETERMINED means a fact needed for the check was missing or could not
be read; it is never folded into NOT_SATISFIED, so a patient is not
reported non-compliant for something the validator could not verify.
"""

from collections.abc import Iterable
from enum import Enum


class ConditionResult(str, Enum):
    """Outcome of a single condition, a condition list, or a requirement."""
    SATISFIED = "satisfied"
    NOT_SATISFIED = "not_satisfied"
    UNDETERMINED = "undetermined"

    @classmethod
    def all_of(cls, results: Iterable["ConditionResult"]) -> "ConditionResult":
        """
        Logical AND.

        UNDETERMINED dominates NOT_SATISFIED, which dominates SATISFIED.
        An empty input is SATISFIED.
        """
        has_failure = False
        for result in results:
            if result == cls.UNDETERMINED:
                return cls.UNDETERMINED
            if result == cls.NOT_SATISFIED:
                has_failure = True
        return cls.NOT_SATISFIED if has_failure else cls.SATISFIED

    @classmethod
    def any_of(cls, results: Iterable["ConditionResult"]) -> "ConditionResult":
        """
        Logical OR.

        SATISFIED wins immediately; otherwise UNDETERMINED dominates
        NOT_SATISFIED. An empty input is NOT_SATISFIED.
        """
        has_undetermined = False
        for result in results:
            if result == cls.SATISFIED:
                return cls.SATISFIED
            if result == cls.UNDETERMINED:
                has_undetermined = True
        return cls.UNDETERMINED if has_undetermined else cls.NOT_SATISFIED

    def to_bool(self, treat_undetermined_as: bool) -> bool:
        """Collapse to a boolean for legacy callers only."""
        if self is ConditionResult.SATISFIED:
            return True
        if self is ConditionResult.NOT_SATISFIED:
            return False
        return treat_undetermined_as


class ComplianceStatus(str, Enum):
    """Patient-level rollup of all requirement verdicts."""
    VALID = "valid"
    INVALID = "invalid"
    UNDETERMINED = "undetermined"

    @classmethod
    def from_string(cls, value: str) -> "ComplianceStatus":
        for status in cls:
            if status.value == value.strip().lower():
                return status
        raise ValueError(f"Unknown compliance status: {value}")

    @classmethod
    def from_results(cls, results: Iterable[ConditionResult]) -> "ComplianceStatus":
        """
        Roll requirement verdicts up into a patient status.

        Nothing to assess is UNDETERMINED rather than VALID.
        """
        results = list(results)
        if not results:
            return cls.UNDETERMINED
        if ConditionResult.UNDETERMINED in results:
            return cls.UNDETERMINED
        if ConditionResult.NOT_SATISFIED in results:
            return cls.INVALID
        return cls.VALID

    @property
    def is_compliant(self) -> bool:
        return self is ComplianceStatus.VALID

    @property
    def is_determinate(self) -> bool:
        return self is not ComplianceStatus.UNDETERMINED
