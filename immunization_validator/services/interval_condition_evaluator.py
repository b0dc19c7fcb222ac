"""
Interval Condition Evaluator.

Checks minimum spacing between doses of the same vaccine. Three forms are
recognized, most specific first:

    "at least 28 days between 1st and 2nd dose"   one named pair
    "at least 6 months between last two doses"    final consecutive pair
    "at least 4 weeks between doses"              every consecutive pair

Differences are calendar-accurate: months and years are counted as whole
calendar months/years between the two dates, not as 30/365-day blocks.
"""

from collections.abc import Sequence
from datetime import date

from immunization_validator.config.logging_config import get_logger
from immunization_validator.models.models import Immunization
from immunization_validator.models.requirement_models import (
    ConditionEvaluation,
    IntervalAllPairs,
    IntervalLastTwo,
    IntervalPair,
    ParsedIntervalCondition,
    Unparsable,
)
from immunization_validator.models.results import ConditionResult
from immunization_validator.services.condition_parser import parse_interval_condition
from immunization_validator.services.dates import (
    calendar_difference,
    has_unparsable_date,
    sort_doses_by_date,
)

logger = get_logger(__name__)

REASON_UNPARSABLE = "Unparsable condition"
REASON_INVALID_DATE = "Invalid immunization date"
REASON_OUT_OF_ORDER = "Immunization dates out of order"
REASON_ERROR = "Evaluation error"


class IntervalConditionEvaluator:
    """Evaluate minimum-interval conditions against a patient's doses."""

    def evaluate(
        self,
        condition: str | ParsedIntervalCondition | None,
        doses: Sequence[Immunization] | None,
    ) -> ConditionResult:
        """Evaluate one interval condition."""
        return self.evaluate_detailed(condition, doses).result

    def evaluate_all(
        self,
        conditions: Sequence[str | ParsedIntervalCondition] | None,
        doses: Sequence[Immunization] | None,
    ) -> ConditionResult:
        """AND over all conditions; an empty list is SATISFIED."""
        return ConditionResult.all_of(
            evaluation.result for evaluation in self.evaluate_all_detailed(conditions, doses)
        )

    def evaluate_all_detailed(
        self,
        conditions: Sequence[str | ParsedIntervalCondition] | None,
        doses: Sequence[Immunization] | None,
    ) -> list[ConditionEvaluation]:
        if not conditions:
            return []
        sorted_doses = sort_doses_by_date(doses)
        return [self.evaluate_detailed(condition, sorted_doses) for condition in conditions]

    def evaluate_detailed(
        self,
        condition: str | ParsedIntervalCondition | None,
        doses: Sequence[Immunization] | None,
    ) -> ConditionEvaluation:
        """
        Evaluate one interval condition and explain the result.

        Unexpected errors are logged and reported as UNDETERMINED.
        """
        if condition is None:
            text = ""
        else:
            text = condition if isinstance(condition, str) else condition.text
        try:
            return self._evaluate(condition, text, doses)
        except Exception as e:
            logger.exception("Interval condition evaluation failed", condition=text, error=str(e))
            return _evaluation(text, ConditionResult.UNDETERMINED, REASON_ERROR)

    def _evaluate(
        self,
        condition: str | ParsedIntervalCondition | None,
        text: str,
        doses: Sequence[Immunization] | None,
    ) -> ConditionEvaluation:
        if not text.strip():
            return _evaluation(text, ConditionResult.UNDETERMINED, REASON_UNPARSABLE)

        sorted_doses = sort_doses_by_date(doses)

        parsed = parse_interval_condition(condition) if isinstance(condition, str) else condition
        if isinstance(parsed, Unparsable):
            logger.warning("Unrecognized interval condition", condition=text, reason=parsed.reason)
            return _evaluation(text, ConditionResult.UNDETERMINED, REASON_UNPARSABLE)

        if isinstance(parsed, IntervalPair):
            return self._evaluate_pair(parsed, sorted_doses)

        if len(sorted_doses) < 2:
            return _evaluation(
                text,
                ConditionResult.NOT_SATISFIED,
                f"At least 2 doses needed, found {len(sorted_doses)}",
            )

        if has_unparsable_date(sorted_doses):
            return _unknown_order(text)

        if isinstance(parsed, IntervalLastTwo):
            return self._check_pair(parsed, sorted_doses[-2], sorted_doses[-1], len(sorted_doses) - 1, len(sorted_doses))

        return self._evaluate_all_pairs(parsed, sorted_doses)

    def _evaluate_pair(self, condition: IntervalPair, doses: list[Immunization]) -> ConditionEvaluation:
        if len(doses) < condition.to_index:
            return _evaluation(
                condition.text,
                ConditionResult.NOT_SATISFIED,
                f"Dose {condition.to_index} not administered",
            )
        if has_unparsable_date(doses):
            return _unknown_order(condition.text)
        return self._check_pair(
            condition,
            doses[condition.from_index - 1],
            doses[condition.to_index - 1],
            condition.from_index,
            condition.to_index,
        )

    def _evaluate_all_pairs(self, condition: IntervalAllPairs, doses: list[Immunization]) -> ConditionEvaluation:
        for position in range(1, len(doses)):
            evaluation = self._check_pair(condition, doses[position - 1], doses[position], position, position + 1)
            if evaluation.result is not ConditionResult.SATISFIED:
                return evaluation
        return _evaluation(condition.text, ConditionResult.SATISFIED)

    def _check_pair(
        self,
        condition: IntervalAllPairs | IntervalLastTwo | IntervalPair,
        earlier: Immunization,
        later: Immunization,
        earlier_ordinal: int,
        later_ordinal: int,
    ) -> ConditionEvaluation:
        start: date | None = earlier.parsed_date
        end: date | None = later.parsed_date
        if start is None or end is None:
            return _evaluation(condition.text, ConditionResult.UNDETERMINED, REASON_INVALID_DATE)

        difference = calendar_difference(start, end, condition.unit)
        if difference < 0:
            logger.warning(
                "Dose dates out of order",
                condition=condition.text,
                earlier=start.isoformat(),
                later=end.isoformat(),
            )
            return _evaluation(condition.text, ConditionResult.UNDETERMINED, REASON_OUT_OF_ORDER)

        logger.debug(
            "Interval evaluated",
            condition=condition.text,
            from_date=start.isoformat(),
            to_date=end.isoformat(),
            difference=difference,
            unit=condition.unit.value,
            required=condition.amount,
        )

        if difference >= condition.amount:
            return _evaluation(condition.text, ConditionResult.SATISFIED)
        return _evaluation(
            condition.text,
            ConditionResult.NOT_SATISFIED,
            f"{difference} {condition.unit.value}(s) between doses {earlier_ordinal} and {later_ordinal}, "
            f"{condition.amount} required",
        )


def _unknown_order(text: str) -> ConditionEvaluation:
    # Input order is kept when a date is unreadable, so positions are not chronological
    logger.debug("Dose order unknown, unreadable date in group", condition=text)
    return _evaluation(text, ConditionResult.UNDETERMINED, REASON_INVALID_DATE)


def _evaluation(text: str, result: ConditionResult, reason: str | None = None) -> ConditionEvaluation:
    return ConditionEvaluation(condition=text, result=result, reason=reason)


# Singleton instance
_evaluator_instance: IntervalConditionEvaluator | None = None


def get_interval_condition_evaluator() -> IntervalConditionEvaluator:
    """Get the singleton interval condition evaluator."""
    global _evaluator_instance
    if _evaluator_instance is None:
        _evaluator_instance = IntervalConditionEvaluator()
    return _evaluator_instance
