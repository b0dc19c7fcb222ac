"""
Date Condition Evaluator.

Checks that a given dose was administered on or after a birthday or a
month of life:

    "4th dose on or after 4th birthday"
    "1st dose on or after 12th month"

The boundary day counts ("on or after" is inclusive). Birthday and month
targets use calendar arithmetic, so a Feb 29 birth date reaches its 1st
birthday on Feb 28 of the following year.

Results are tri-state. Only a dose that exists and was given too early is
NOT_SATISFIED; fewer doses than the ordinal is also NOT_SATISFIED. Missing
or unreadable facts (birth date, condition text, any dose date in the
group, since it makes dose ordinals ambiguous) are UNDETERMINED.
"""

from collections.abc import Sequence
from datetime import date

from immunization_validator.config.logging_config import get_logger
from immunization_validator.models.models import Immunization
from immunization_validator.models.requirement_models import (
    BirthdayCondition,
    ConditionEvaluation,
    MonthCondition,
    ParsedDateCondition,
    Unparsable,
)
from immunization_validator.models.results import ConditionResult
from immunization_validator.services.condition_parser import parse_date_condition
from immunization_validator.services.dates import (
    add_months,
    add_years,
    has_unparsable_date,
    sort_doses_by_date,
)

logger = get_logger(__name__)

REASON_MISSING_BIRTH_DATE = "Missing birth date"
REASON_UNPARSABLE = "Unparsable condition"
REASON_INVALID_DATE = "Invalid immunization date"
REASON_ERROR = "Evaluation error"


class DateConditionEvaluator:
    """Evaluate birthday/month conditions against a patient's doses."""

    def evaluate(
        self,
        condition: str | ParsedDateCondition | None,
        doses: Sequence[Immunization] | None,
        birth_date: date | None,
    ) -> ConditionResult:
        """Evaluate one date condition."""
        return self.evaluate_detailed(condition, doses, birth_date).result

    def evaluate_all(
        self,
        conditions: Sequence[str | ParsedDateCondition] | None,
        doses: Sequence[Immunization] | None,
        birth_date: date | None,
    ) -> ConditionResult:
        """AND over all conditions; an empty list is SATISFIED."""
        return ConditionResult.all_of(
            evaluation.result
            for evaluation in self.evaluate_all_detailed(conditions, doses, birth_date)
        )

    def evaluate_all_detailed(
        self,
        conditions: Sequence[str | ParsedDateCondition] | None,
        doses: Sequence[Immunization] | None,
        birth_date: date | None,
    ) -> list[ConditionEvaluation]:
        """Per-condition evaluations, in declaration order."""
        if not conditions:
            return []
        sorted_doses = sort_doses_by_date(doses)
        return [self.evaluate_detailed(condition, sorted_doses, birth_date) for condition in conditions]

    def evaluate_detailed(
        self,
        condition: str | ParsedDateCondition | None,
        doses: Sequence[Immunization] | None,
        birth_date: date | None,
    ) -> ConditionEvaluation:
        """
        Evaluate one date condition and explain the result.

        Unexpected errors are logged and reported as UNDETERMINED so a
        malformed rule never aborts a patient's validation.
        """
        text = _condition_text(condition)
        try:
            return self._evaluate(condition, text, doses, birth_date)
        except Exception as e:
            logger.exception("Date condition evaluation failed", condition=text, error=str(e))
            return ConditionEvaluation(
                condition=text,
                result=ConditionResult.UNDETERMINED,
                reason=REASON_ERROR,
            )

    def _evaluate(
        self,
        condition: str | ParsedDateCondition | None,
        text: str,
        doses: Sequence[Immunization] | None,
        birth_date: date | None,
    ) -> ConditionEvaluation:
        if not text.strip():
            return _undetermined(text, REASON_UNPARSABLE)

        if birth_date is None:
            logger.debug("Date condition needs a birth date", condition=text)
            return _undetermined(text, REASON_MISSING_BIRTH_DATE)

        sorted_doses = sort_doses_by_date(doses)

        parsed = parse_date_condition(condition) if isinstance(condition, str) else condition
        if isinstance(parsed, Unparsable):
            logger.warning("Unrecognized date condition", condition=text, reason=parsed.reason)
            return _undetermined(text, REASON_UNPARSABLE)

        if len(sorted_doses) < parsed.dose_index:
            logger.debug(
                "Not enough doses for date condition",
                condition=text,
                required_dose=parsed.dose_index,
                available=len(sorted_doses),
            )
            return ConditionEvaluation(
                condition=text,
                result=ConditionResult.NOT_SATISFIED,
                reason=f"Dose {parsed.dose_index} not administered",
            )

        # An unreadable date anywhere in the group leaves the Nth dose unknown
        if has_unparsable_date(sorted_doses):
            logger.debug("Dose order unknown, unreadable date in group", condition=text)
            return _undetermined(text, REASON_INVALID_DATE)

        dose_date = sorted_doses[parsed.dose_index - 1].parsed_date

        target = _target_date(parsed, birth_date)
        satisfied = dose_date >= target

        logger.debug(
            "Date condition evaluated",
            condition=text,
            dose_date=dose_date.isoformat(),
            target_date=target.isoformat(),
            satisfied=satisfied,
        )

        if satisfied:
            return ConditionEvaluation(condition=text, result=ConditionResult.SATISFIED)
        return ConditionEvaluation(
            condition=text,
            result=ConditionResult.NOT_SATISFIED,
            reason=f"Dose {parsed.dose_index} given {dose_date.isoformat()}, before {target.isoformat()}",
        )


def _target_date(condition: BirthdayCondition | MonthCondition, birth_date: date) -> date:
    if isinstance(condition, BirthdayCondition):
        return add_years(birth_date, condition.year_offset)
    return add_months(birth_date, condition.month_offset)


def _condition_text(condition) -> str:
    if condition is None:
        return ""
    if isinstance(condition, str):
        return condition
    return condition.text


def _undetermined(text: str, reason: str) -> ConditionEvaluation:
    return ConditionEvaluation(condition=text, result=ConditionResult.UNDETERMINED, reason=reason)


# Singleton instance
_evaluator_instance: DateConditionEvaluator | None = None


def get_date_condition_evaluator() -> DateConditionEvaluator:
    """Get the singleton date condition evaluator."""
    global _evaluator_instance
    if _evaluator_instance is None:
        _evaluator_instance = DateConditionEvaluator()
    return _evaluator_instance
