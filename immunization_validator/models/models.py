"""
Pydantic models for API request/response validation.

Request models accept the camelCase keys used by existing clients
(vaccineCode, occurrenceDateTime, birthDate, ...) as well as the
snake_case field names. Responses are serialized by alias.
"""

from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from immunization_validator.models.results import ComplianceStatus, ConditionResult


def parse_iso_date(value: str | None) -> date | None:
    """
    Parse an ISO calendar date, or the date part of an ISO date-time.

    Returns None for missing or unreadable values instead of raising.
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


# ============================================================================
# Patient Record
# ============================================================================

class Immunization(BaseModel):
    """
    A single administered dose.

    Attributes:
        vaccine_code: Vaccine given (e.g. "DTaP", "Polio").
        occurrence_date: Administration date as submitted (ISO format).
        dose_number: Dose number as recorded by the source, informational only.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    vaccine_code: str = Field(..., min_length=1, alias="vaccineCode", description="Vaccine code")
    occurrence_date: str = Field(
        ..., min_length=1, alias="occurrenceDateTime", description="Administration date"
    )
    dose_number: int | None = Field(default=None, alias="doseNumber", description="Recorded dose number")

    @field_validator("vaccine_code", "occurrence_date")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Value cannot be empty or whitespace only")
        return cleaned

    @property
    def parsed_date(self) -> date | None:
        return parse_iso_date(self.occurrence_date)


class VaccineException(BaseModel):
    """A documented exemption for one vaccine (medical, religious, waiver, ...)."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    vaccine_code: str = Field(..., min_length=1, alias="vaccineCode", description="Vaccine code")
    exception_type: str = Field(..., min_length=1, alias="exceptionType", description="Exemption type tag")
    description: str | None = Field(default=None, description="Supporting description")


class Patient(BaseModel):
    """
    Patient immunization record submitted for validation.

    Attributes:
        id: Patient identifier (PII, masked in logs).
        birth_date: ISO birth date. Without it, date conditions are undetermined.
        school_year: School year the patient is enrolled in, if known.
        immunizations: Administered doses, in any order.
        exceptions: Documented exemptions.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Patient identifier")
    birth_date: str | None = Field(default=None, alias="birthDate", description="ISO birth date")
    school_year: str | None = Field(default=None, alias="schoolYear", description="School year")
    immunizations: list[Immunization] = Field(
        default_factory=list, alias="immunization", description="Administered doses"
    )
    exceptions: list[VaccineException] = Field(
        default_factory=list, description="Documented exemptions"
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Patient identifier is required")
        return v.strip()

    @field_validator("immunizations", "exceptions", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    @property
    def parsed_birth_date(self) -> date | None:
        return parse_iso_date(self.birth_date)


# ============================================================================
# Validation Outcomes
# ============================================================================

class UnmetReason(str, Enum):
    """Why a requirement was not satisfied."""
    INSUFFICIENT_DOSES = "insufficient_doses"
    CONDITIONS_NOT_MET = "conditions_not_met"
    ALTERNATE_NOT_SATISFIED = "alternate_not_satisfied"
    ALTERNATE_AND_PRIMARY_NOT_SATISFIED = "alternate_and_primary_not_satisfied"


class UnmetRequirement(BaseModel):
    """A requirement the patient definitely does not meet."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    vaccine_code: str = Field(..., alias="vaccineCode", description="Vaccine code")
    required_doses: int = Field(..., alias="requiredDoses", description="Doses required")
    found_doses: int = Field(..., alias="foundDoses", description="Doses found")
    description: str = Field(..., description="Human-readable explanation")
    reason: UnmetReason = Field(..., description="Failure category")


class UndeterminedCondition(BaseModel):
    """A requirement that could not be evaluated, with a remediation hint."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    vaccine_code: str | None = Field(default=None, alias="vaccineCode", description="Vaccine code")
    condition: str | None = Field(default=None, description="Requirement or condition text")
    reason: str = Field(..., description="Why it could not be evaluated")
    details: str | None = Field(default=None, description="Additional details")
    suggestion: str | None = Field(default=None, description="How to resolve it")


class ResolutionPath(str, Enum):
    """Which branch decided a requirement."""
    EXEMPTION = "exemption"
    ALTERNATE = "alternate"
    PRIMARY = "primary"
    STRICT_ALTERNATE = "strict_alternate"


class RequirementOutcome(BaseModel):
    """Verdict for a single requirement."""
    model_config = ConfigDict(frozen=True)

    vaccine_code: str
    result: ConditionResult
    path: ResolutionPath
    alternate_attempted: bool = False
    found_doses: int = 0
    required_doses: int = 0
    unmet: UnmetRequirement | None = None
    undetermined: UndeterminedCondition | None = None


class ResolutionResult(BaseModel):
    """
    Outcome of resolving a patient against a list of requirements.

    Counters mirror the per-requirement outcomes; the alternate counters
    record how often alternate schedules were attempted, satisfied, or
    fell back to the primary schedule.
    """
    status: ComplianceStatus
    outcomes: list[RequirementOutcome] = Field(default_factory=list)
    unmet: list[UnmetRequirement] = Field(default_factory=list)
    undetermined: list[UndeterminedCondition] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    satisfied: int = 0
    unsatisfied: int = 0
    undetermined_count: int = 0
    alternate_attempted: int = 0
    alternate_satisfied: int = 0
    primary_fallbacks: int = 0


class ValidationMetadata(BaseModel):
    """Counts and context for a validation run."""
    model_config = ConfigDict(populate_by_name=True)

    validated_at: datetime = Field(
        default_factory=datetime.now, alias="validatedAt", description="Validation timestamp"
    )
    state: str = Field(..., description="State code")
    school_year: str | None = Field(default=None, alias="schoolYear", description="School year")
    age: int | None = Field(default=None, description="Effective age used for lookup")
    total_requirements: int = Field(..., ge=0, alias="totalRequirements")
    satisfied_requirements: int = Field(..., ge=0, alias="satisfiedRequirements")
    unsatisfied_requirements: int = Field(..., ge=0, alias="unsatisfiedRequirements")
    undetermined_requirements: int = Field(..., ge=0, alias="undeterminedRequirements")
    alternate_mode: str = Field(..., alias="alternateMode", description="FLEXIBLE or STRICT")
    validator_version: str = Field(..., alias="validatorVersion")


class ValidationResponse(BaseModel):
    """
    Validation result for one patient.

    Attributes:
        patient_id: Patient identifier.
        status: Tri-state compliance status.
        valid: Legacy boolean; UNDETERMINED is reported as false.
        message: Human-readable summary.
        unmet_requirements: Detail list, only when details are requested.
        undetermined_conditions: Detail list, only when details are requested.
        warnings: Data-quality warnings (bad birth date, duplicate exemptions).
        metadata: Counts and context.
    """
    model_config = ConfigDict(populate_by_name=True)

    patient_id: str = Field(..., alias="id", description="Patient identifier")
    status: ComplianceStatus = Field(..., description="Compliance status")
    message: str = Field(..., description="Summary message")
    unmet_requirements: list[UnmetRequirement] | None = Field(
        default=None, alias="unmetRequirements", description="Unmet requirements"
    )
    undetermined_conditions: list[UndeterminedCondition] | None = Field(
        default=None, alias="undeterminedConditions", description="Undetermined conditions"
    )
    warnings: list[str] | None = Field(default=None, description="Data-quality warnings")
    metadata: ValidationMetadata | None = Field(default=None, description="Validation metadata")

    @computed_field
    @property
    def valid(self) -> bool:
        return self.status is ComplianceStatus.VALID


# ============================================================================
# Batch
# ============================================================================

class ResponseMode(str, Enum):
    """How much detail to include in validation responses."""
    SIMPLE = "simple"
    DETAILED = "detailed"

    @classmethod
    def _missing_(cls, value):
        # Accept "DETAILED", " Simple " and the like
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class BatchValidationRequest(BaseModel):
    """Validate several patients against the same state and age/school year."""
    model_config = ConfigDict(populate_by_name=True)

    state: str = Field(..., min_length=1, description="State code")
    age: int | None = Field(default=None, ge=0, le=150, description="Age in years")
    school_year: str | None = Field(default=None, alias="schoolYear", description="School year")
    response_mode: ResponseMode = Field(
        default=ResponseMode.SIMPLE, alias="responseMode", description="simple or detailed"
    )
    patients: list[Patient] = Field(..., min_length=1, description="Patients to validate")


class BatchSummary(BaseModel):
    """Status counts across a batch."""
    total: int = Field(..., ge=0)
    valid: int = Field(..., ge=0)
    invalid: int = Field(..., ge=0)
    undetermined: int = Field(..., ge=0)


class BatchValidationResponse(BaseModel):
    """Results in the same order as the submitted patients."""
    results: list[ValidationResponse] = Field(..., description="Per-patient results")
    summary: BatchSummary = Field(..., description="Status counts")


# ============================================================================
# Service Models
# ============================================================================

class HealthStatus(str, Enum):
    """System health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """
    Health check response for monitoring.

    Attributes:
        status: Overall system health status.
        version: Application version.
        environment: Deployment environment.
        checks: Individual component health checks.
    """
    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Deployment environment")
    alternate_mode: Literal["FLEXIBLE", "STRICT"] = Field(..., description="Alternate behavior mode")
    timestamp: datetime = Field(default_factory=datetime.now, description="Check timestamp")
    checks: dict[str, bool] = Field(default_factory=dict, description="Component health checks")


class ErrorResponse(BaseModel):
    """
    Standardized error response.

    Attributes:
        error: Error type/code.
        message: Human-readable error message.
        details: Additional error details.
        request_id: Request ID for tracing.
    """
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict | list | None = Field(default=None, description="Additional details")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")
