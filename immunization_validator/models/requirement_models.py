"""
Pydantic models for immunization requirements.

This module defines the structured representation of state requirements,
their alternate schedules, and the parsed form of the date and interval
condition strings attached to them.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from immunization_validator.models.results import ConditionResult


# ============================================================================
# Interval Units
# ============================================================================

class IntervalUnit(str, Enum):
    """Calendar units accepted by interval conditions."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def from_text(cls, text: str) -> "IntervalUnit":
        """Map 'days', 'Week', 'months' etc. onto a unit."""
        normalized = text.strip().lower()
        if normalized.endswith("s"):
            normalized = normalized[:-1]
        return cls(normalized)


# ============================================================================
# Condition Models (parsed condition strings)
# ============================================================================

class BirthdayCondition(BaseModel):
    """Nth dose on or after the Yth birthday."""
    model_config = ConfigDict(frozen=True)

    type: Literal["birthday"] = "birthday"
    text: str = Field(..., description="Verbatim condition text")
    dose_index: int = Field(..., ge=1, description="1-based dose ordinal")
    year_offset: int = Field(..., ge=0, description="Birthday number")


class MonthCondition(BaseModel):
    """Nth dose on or after the Mth month of life."""
    model_config = ConfigDict(frozen=True)

    type: Literal["month"] = "month"
    text: str = Field(..., description="Verbatim condition text")
    dose_index: int = Field(..., ge=1, description="1-based dose ordinal")
    month_offset: int = Field(..., ge=0, description="Months after birth")


class IntervalAllPairs(BaseModel):
    """At least N units between every consecutive pair of doses."""
    model_config = ConfigDict(frozen=True)

    type: Literal["interval_all_pairs"] = "interval_all_pairs"
    text: str = Field(..., description="Verbatim condition text")
    amount: int = Field(..., ge=0, description="Minimum interval")
    unit: IntervalUnit = Field(..., description="Interval unit")


class IntervalLastTwo(BaseModel):
    """At least N units between the final two doses."""
    model_config = ConfigDict(frozen=True)

    type: Literal["interval_last_two"] = "interval_last_two"
    text: str = Field(..., description="Verbatim condition text")
    amount: int = Field(..., ge=0, description="Minimum interval")
    unit: IntervalUnit = Field(..., description="Interval unit")


class IntervalPair(BaseModel):
    """At least N units between two named doses."""
    model_config = ConfigDict(frozen=True)

    type: Literal["interval_pair"] = "interval_pair"
    text: str = Field(..., description="Verbatim condition text")
    amount: int = Field(..., ge=0, description="Minimum interval")
    unit: IntervalUnit = Field(..., description="Interval unit")
    from_index: int = Field(..., ge=1, description="1-based ordinal of the earlier dose")
    to_index: int = Field(..., ge=1, description="1-based ordinal of the later dose")


class Unparsable(BaseModel):
    """Condition text that matched no supported grammar."""
    model_config = ConfigDict(frozen=True)

    type: Literal["unparsable"] = "unparsable"
    text: str = Field(..., description="Verbatim condition text")
    reason: str = Field(..., description="Why parsing failed")


DateCondition = BirthdayCondition | MonthCondition
IntervalCondition = IntervalAllPairs | IntervalLastTwo | IntervalPair
ParsedDateCondition = DateCondition | Unparsable
ParsedIntervalCondition = IntervalCondition | Unparsable


class ConditionEvaluation(BaseModel):
    """Result of evaluating one condition, with the reason when not satisfied."""
    model_config = ConfigDict(frozen=True)

    condition: str = Field(..., description="Condition text")
    result: ConditionResult = Field(..., description="Tri-state outcome")
    reason: str | None = Field(default=None, description="Why it was not satisfied or not evaluable")


# ============================================================================
# Requirements
# ============================================================================

class AlternateRequirement(BaseModel):
    """
    An alternate schedule that can stand in for the primary requirement.

    Attributes:
        alternate_vaccine_code: Vaccine counted for this schedule. Falls back
            to the owning requirement's code when omitted.
        min_doses: Doses needed before the alternate is attempted.
        date_conditions: Birthday/month conditions, AND-ed together.
        interval_conditions: Interval conditions, AND-ed together.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    alternate_vaccine_code: str | None = Field(
        default=None, alias="alternateVaccineCode", description="Vaccine code counted"
    )
    min_doses: int = Field(default=1, ge=0, alias="minDoses", description="Dose threshold")
    description: str | None = Field(default=None, description="Human-readable summary")
    date_conditions: list[str] = Field(
        default_factory=list, alias="dateConditions", description="Date-based conditions"
    )
    interval_conditions: list[str] = Field(
        default_factory=list, alias="intervalConditions", description="Interval-based conditions"
    )
    notes: str | None = Field(default=None, description="Free-text notes")

    @field_validator("date_conditions", "interval_conditions", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    def vaccine_code_for(self, requirement: "Requirement") -> str:
        return self.alternate_vaccine_code or requirement.vaccine_code


class Requirement(BaseModel):
    """
    A single immunization requirement for a state and age or school year.

    Attributes:
        vaccine_code: Vaccine the requirement applies to (e.g. "DTaP").
        min_doses: Minimum doses for the primary schedule.
        accepted_exceptions: Exemption types that satisfy the requirement
            without any doses.
        date_conditions: Primary-schedule date conditions (AND).
        interval_conditions: Primary-schedule interval conditions (AND).
        alternate_requirements: Alternate schedules, tried in order.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    vaccine_code: str = Field(..., min_length=1, alias="vaccineCode", description="Vaccine code")
    min_doses: int = Field(default=1, ge=0, alias="minDoses", description="Primary dose threshold")
    description: str | None = Field(default=None, description="Human-readable requirement")
    accepted_exceptions: list[str] = Field(
        default_factory=list, alias="acceptedExceptions", description="Accepted exemption types"
    )
    date_conditions: list[str] = Field(
        default_factory=list, alias="dateConditions", description="Date-based conditions"
    )
    interval_conditions: list[str] = Field(
        default_factory=list, alias="intervalConditions", description="Interval-based conditions"
    )
    alternate_requirements: list[AlternateRequirement] = Field(
        default_factory=list, alias="alternateRequirements", description="Alternate schedules"
    )
    notes: str | None = Field(default=None, description="Free-text notes")

    @field_validator(
        "accepted_exceptions",
        "date_conditions",
        "interval_conditions",
        "alternate_requirements",
        mode="before",
    )
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    def all_condition_texts(self) -> tuple[list[str], list[str]]:
        """Date and interval condition strings across primary and alternates."""
        date_texts = list(self.date_conditions)
        interval_texts = list(self.interval_conditions)
        for alternate in self.alternate_requirements:
            date_texts.extend(alternate.date_conditions)
            interval_texts.extend(alternate.interval_conditions)
        return date_texts, interval_texts
