"""
Condition Parser for requirement timing rules.

Turns the condition strings found in requirement definitions into
typed condition models. Two families are supported:

Date conditions:
    "4th dose on or after 4th birthday"
    "1st dose on or after 12th month"

Interval conditions (most specific first):
    "at least 28 days between 1st and 2nd dose"
    "at least 6 months between last two doses"
    "at least 4 weeks between doses"

Matching is case-insensitive and ordinal suffixes are optional. Text
that matches nothing becomes an Unparsable model; parsing never raises
for malformed input.
"""

import re
from functools import lru_cache

from immunization_validator.config.logging_config import get_logger
from immunization_validator.models.requirement_models import (
    BirthdayCondition,
    IntervalAllPairs,
    IntervalLastTwo,
    IntervalPair,
    IntervalUnit,
    MonthCondition,
    ParsedDateCondition,
    ParsedIntervalCondition,
    Unparsable,
)

logger = get_logger(__name__)

_ORDINAL = r"(\d+)(?:st|nd|rd|th)?"
_UNIT = r"(days?|weeks?|months?|years?)"


class ConditionParser:
    """Parse date and interval condition strings into condition models."""

    # "Nth dose on or after Yth birthday|month"
    DATE_PATTERN = re.compile(
        rf"{_ORDINAL}\s+dose\s+on\s+or\s+after\s+{_ORDINAL}\s+(birthday|month)\b",
        re.IGNORECASE,
    )

    # Interval patterns - order matters (most specific first)
    INTERVAL_PAIR_PATTERN = re.compile(
        rf"at\s+least\s+(\d+)\s+{_UNIT}\s+between\s+{_ORDINAL}\s+and\s+{_ORDINAL}\s+doses?\b",
        re.IGNORECASE,
    )
    INTERVAL_GENERIC_PATTERN = re.compile(
        rf"at\s+least\s+(\d+)\s+{_UNIT}\s+between\s+(last\s+two\s+)?doses\b",
        re.IGNORECASE,
    )

    DATE_HELP = "expected 'Nth dose on or after Yth birthday' or 'Nth dose on or after Mth month'"
    INTERVAL_HELP = (
        "expected 'at least N <unit> between doses', "
        "'at least N <unit> between last two doses' or "
        "'at least N <unit> between Ath and Bth dose'"
    )

    def parse_date(self, text: str | None) -> ParsedDateCondition:
        """Parse a birthday/month condition."""
        if text is None or not text.strip():
            return Unparsable(text=text or "", reason="Empty condition")

        match = self.DATE_PATTERN.search(text)
        if not match:
            return Unparsable(text=text, reason=f"Unrecognized date condition: {self.DATE_HELP}")

        dose_index = int(match.group(1))
        offset = int(match.group(2))
        kind = match.group(3).lower()

        if dose_index < 1:
            return Unparsable(text=text, reason="Dose ordinal must be 1 or greater")

        if kind == "birthday":
            return BirthdayCondition(text=text, dose_index=dose_index, year_offset=offset)
        return MonthCondition(text=text, dose_index=dose_index, month_offset=offset)

    def parse_interval(self, text: str | None) -> ParsedIntervalCondition:
        """Parse an interval condition, trying the specific-pair form first."""
        if text is None or not text.strip():
            return Unparsable(text=text or "", reason="Empty condition")

        pair_match = self.INTERVAL_PAIR_PATTERN.search(text)
        if pair_match:
            amount = int(pair_match.group(1))
            unit = IntervalUnit.from_text(pair_match.group(2))
            from_index = int(pair_match.group(3))
            to_index = int(pair_match.group(4))
            if from_index < 1 or to_index <= from_index:
                return Unparsable(
                    text=text,
                    reason=f"Dose ordinals must satisfy 1 <= first < second, got {from_index} and {to_index}",
                )
            return IntervalPair(
                text=text,
                amount=amount,
                unit=unit,
                from_index=from_index,
                to_index=to_index,
            )

        generic_match = self.INTERVAL_GENERIC_PATTERN.search(text)
        if generic_match:
            amount = int(generic_match.group(1))
            unit = IntervalUnit.from_text(generic_match.group(2))
            if generic_match.group(3):
                return IntervalLastTwo(text=text, amount=amount, unit=unit)
            return IntervalAllPairs(text=text, amount=amount, unit=unit)

        return Unparsable(text=text, reason=f"Unrecognized interval condition: {self.INTERVAL_HELP}")


# Singleton instance
_parser_instance: ConditionParser | None = None


def get_condition_parser() -> ConditionParser:
    """Get the singleton condition parser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = ConditionParser()
    return _parser_instance


@lru_cache(maxsize=1024)
def parse_date_condition(text: str) -> ParsedDateCondition:
    """Cached parse of a date condition string."""
    parsed = get_condition_parser().parse_date(text)
    if isinstance(parsed, Unparsable):
        logger.debug("Date condition not parsed", condition=text, reason=parsed.reason)
    return parsed


@lru_cache(maxsize=1024)
def parse_interval_condition(text: str) -> ParsedIntervalCondition:
    """Cached parse of an interval condition string."""
    parsed = get_condition_parser().parse_interval(text)
    if isinstance(parsed, Unparsable):
        logger.debug("Interval condition not parsed", condition=text, reason=parsed.reason)
    return parsed
