"""
Validation Service for immunization compliance.

Resolves a patient's immunization record against a list of requirements
and rolls the per-requirement verdicts up into VALID, INVALID or
UNDETERMINED.

Per requirement, in order:
1. Exemption: an accepted exemption for the vaccine satisfies it outright.
2. Alternates: tried in declared order. An alternate whose dose threshold
   is met is "attempted"; if its conditions hold the requirement is met.
3. Mode: in STRICT mode an attempted-but-unsatisfied alternate makes the
   requirement unmet without looking at the primary schedule.
4. Primary: dose count, then date and interval conditions.

All decisions are carried as tri-state results; nothing is collapsed to
a boolean until the response's legacy `valid` field.
"""

from collections.abc import Sequence
from datetime import date

from dateutil.relativedelta import relativedelta

from immunization_validator.config.config import AlternateBehaviorMode, get_settings
from immunization_validator.config.logging_config import get_logger
from immunization_validator.models.models import (
    Immunization,
    Patient,
    RequirementOutcome,
    ResolutionPath,
    ResolutionResult,
    UndeterminedCondition,
    UnmetReason,
    UnmetRequirement,
    ValidationMetadata,
    ValidationResponse,
)
from immunization_validator.models.requirement_models import (
    AlternateRequirement,
    ConditionEvaluation,
    Requirement,
)
from immunization_validator.models.results import ComplianceStatus, ConditionResult
from immunization_validator.services import date_condition_evaluator as date_eval
from immunization_validator.services import interval_condition_evaluator as interval_eval
from immunization_validator.services.date_condition_evaluator import (
    DateConditionEvaluator,
    get_date_condition_evaluator,
)
from immunization_validator.services.dates import group_doses_by_vaccine
from immunization_validator.services.interval_condition_evaluator import (
    IntervalConditionEvaluator,
    get_interval_condition_evaluator,
)
from immunization_validator.services.requirements_service import (
    RequirementsService,
    get_requirements_service,
)

logger = get_logger(__name__)


# Remediation hints for undetermined requirements, keyed by evaluation reason
SUGGESTIONS = {
    date_eval.REASON_MISSING_BIRTH_DATE: "Provide the patient's birth date in ISO format (YYYY-MM-DD)",
    date_eval.REASON_INVALID_DATE: "Correct immunization dates to ISO format (YYYY-MM-DD)",
    date_eval.REASON_UNPARSABLE: "Review the requirement's condition text in the requirements catalogue",
    interval_eval.REASON_OUT_OF_ORDER: "Review the immunization dates for this vaccine",
}
DEFAULT_SUGGESTION = "Verify birth date is provided and conditions are correctly formatted"

INVALID_BIRTH_DATE_WARNING = "Invalid birth date format - date-based conditions cannot be evaluated"


class RequirementResolver:
    """
    Resolve requirements for one patient.

    Stateless: every call is a pure function of its arguments, so a
    single instance can be shared across threads.
    """

    def __init__(
        self,
        date_evaluator: DateConditionEvaluator | None = None,
        interval_evaluator: IntervalConditionEvaluator | None = None,
    ):
        self.date_evaluator = date_evaluator or get_date_condition_evaluator()
        self.interval_evaluator = interval_evaluator or get_interval_condition_evaluator()

    def resolve(
        self,
        patient: Patient,
        requirements: Sequence[Requirement] | None,
        alternate_mode: AlternateBehaviorMode = AlternateBehaviorMode.FLEXIBLE,
    ) -> ResolutionResult:
        """
        Resolve every requirement and roll the verdicts up.

        Args:
            patient: Patient record (doses in any order).
            requirements: Requirements from the catalogue lookup.
            alternate_mode: FLEXIBLE or STRICT alternate handling.

        Returns:
            ResolutionResult with status, per-requirement outcomes and
            detail records. An empty requirement list is UNDETERMINED.
        """
        result = ResolutionResult(status=ComplianceStatus.UNDETERMINED)
        warnings = result.warnings

        birth_date = patient.parsed_birth_date
        if patient.birth_date and birth_date is None:
            logger.warning(
                "Invalid birth date format",
                patient_id=patient.id,
            )
            warnings.append(INVALID_BIRTH_DATE_WARNING)

        exemptions = self._exemptions_by_vaccine(patient, warnings)

        # Sorted once here; evaluators receive chronologically ordered doses
        doses_by_vaccine = group_doses_by_vaccine(patient.immunizations)

        for requirement in requirements or []:
            outcome = self.resolve_requirement(
                requirement,
                doses_by_vaccine,
                birth_date,
                exemptions,
                alternate_mode,
                warnings,
            )
            result.outcomes.append(outcome)
            self._tally(result, outcome)

        result.status = ComplianceStatus.from_results(outcome.result for outcome in result.outcomes)

        if result.alternate_attempted:
            logger.info(
                "Alternate requirements summary",
                attempted=result.alternate_attempted,
                satisfied=result.alternate_satisfied,
                primary_fallbacks=result.primary_fallbacks,
            )

        return result

    def resolve_requirement(
        self,
        requirement: Requirement,
        doses_by_vaccine: dict[str, list[Immunization]],
        birth_date: date | None,
        exemptions: dict[str, str],
        alternate_mode: AlternateBehaviorMode,
        warnings: list[str] | None = None,
    ) -> RequirementOutcome:
        """Resolve a single requirement; doses_by_vaccine must be date-sorted."""
        warnings = warnings if warnings is not None else []
        vaccine_code = requirement.vaccine_code
        doses = doses_by_vaccine.get(vaccine_code, [])
        found = len(doses)
        required = requirement.min_doses

        # Step 1: exemption
        exemption_type = exemptions.get(vaccine_code)
        if exemption_type is not None and exemption_type in requirement.accepted_exceptions:
            logger.debug(
                "Requirement satisfied by exemption",
                vaccine_code=vaccine_code,
                exemption_type=exemption_type,
            )
            return RequirementOutcome(
                vaccine_code=vaccine_code,
                result=ConditionResult.SATISFIED,
                path=ResolutionPath.EXEMPTION,
                found_doses=found,
                required_doses=required,
            )

        # Step 2: alternates, in declared order
        attempted = False
        for alternate in requirement.alternate_requirements:
            alternate_code = alternate.vaccine_code_for(requirement)
            alternate_doses = doses_by_vaccine.get(alternate_code, [])
            if len(alternate_doses) < alternate.min_doses:
                continue

            attempted = True
            alternate_result, _ = self._evaluate_conditions(
                alternate, vaccine_code, alternate_doses, birth_date, warnings
            )

            if alternate_result is ConditionResult.SATISFIED:
                logger.info(
                    "Requirement satisfied via alternate",
                    vaccine_code=vaccine_code,
                    alternate_vaccine_code=alternate_code,
                    doses=len(alternate_doses),
                )
                return RequirementOutcome(
                    vaccine_code=vaccine_code,
                    result=ConditionResult.SATISFIED,
                    path=ResolutionPath.ALTERNATE,
                    alternate_attempted=True,
                    found_doses=found,
                    required_doses=required,
                )
            logger.debug(
                "Alternate attempted but not satisfied",
                vaccine_code=vaccine_code,
                alternate_vaccine_code=alternate_code,
                result=alternate_result.value,
            )

        # Step 3: STRICT mode forfeits the primary schedule
        if attempted and alternate_mode is AlternateBehaviorMode.STRICT:
            logger.warning(
                "STRICT mode: alternate attempted but not satisfied, primary not checked",
                vaccine_code=vaccine_code,
            )
            return RequirementOutcome(
                vaccine_code=vaccine_code,
                result=ConditionResult.NOT_SATISFIED,
                path=ResolutionPath.STRICT_ALTERNATE,
                alternate_attempted=True,
                found_doses=found,
                required_doses=required,
                unmet=UnmetRequirement(
                    vaccine_code=vaccine_code,
                    required_doses=required,
                    found_doses=found,
                    description=(
                        "Alternate requirement not satisfied (STRICT mode): "
                        f"{requirement.description or vaccine_code}"
                    ),
                    reason=UnmetReason.ALTERNATE_NOT_SATISFIED,
                ),
            )

        if attempted:
            logger.info(
                "Alternate attempted but not satisfied, checking primary requirement",
                vaccine_code=vaccine_code,
            )

        # Step 4: primary schedule
        if found < required:
            return RequirementOutcome(
                vaccine_code=vaccine_code,
                result=ConditionResult.NOT_SATISFIED,
                path=ResolutionPath.PRIMARY,
                alternate_attempted=attempted,
                found_doses=found,
                required_doses=required,
                unmet=UnmetRequirement(
                    vaccine_code=vaccine_code,
                    required_doses=required,
                    found_doses=found,
                    description=requirement.description
                    or f"Insufficient doses of {vaccine_code}: required {required}, found {found}",
                    reason=UnmetReason.INSUFFICIENT_DOSES,
                ),
            )

        primary_result, evaluations = self._evaluate_conditions(
            requirement, vaccine_code, doses, birth_date, warnings
        )

        if primary_result is ConditionResult.SATISFIED:
            logger.info(
                "Requirement satisfied via primary",
                vaccine_code=vaccine_code,
                doses=found,
                alternate_attempted=attempted,
            )
            return RequirementOutcome(
                vaccine_code=vaccine_code,
                result=ConditionResult.SATISFIED,
                path=ResolutionPath.PRIMARY,
                alternate_attempted=attempted,
                found_doses=found,
                required_doses=required,
            )

        if primary_result is ConditionResult.UNDETERMINED:
            return RequirementOutcome(
                vaccine_code=vaccine_code,
                result=ConditionResult.UNDETERMINED,
                path=ResolutionPath.PRIMARY,
                alternate_attempted=attempted,
                found_doses=found,
                required_doses=required,
                undetermined=self._undetermined_condition(requirement, evaluations),
            )

        failed = "; ".join(
            f"{evaluation.condition} ({evaluation.reason})" if evaluation.reason else evaluation.condition
            for evaluation in evaluations
            if evaluation.result is ConditionResult.NOT_SATISFIED
        )
        if attempted:
            reason = UnmetReason.ALTERNATE_AND_PRIMARY_NOT_SATISFIED
            summary = f"{vaccine_code}: {found} doses found, but neither alternate nor primary requirements satisfied"
        else:
            reason = UnmetReason.CONDITIONS_NOT_MET
            summary = f"{vaccine_code}: {found} doses found, but date/interval conditions not met"
        description = f"{summary}. {requirement.description}" if requirement.description else summary
        if failed:
            description = f"{description} [{failed}]"

        return RequirementOutcome(
            vaccine_code=vaccine_code,
            result=ConditionResult.NOT_SATISFIED,
            path=ResolutionPath.PRIMARY,
            alternate_attempted=attempted,
            found_doses=found,
            required_doses=required,
            unmet=UnmetRequirement(
                vaccine_code=vaccine_code,
                required_doses=required,
                found_doses=found,
                description=description,
                reason=reason,
            ),
        )

    def _evaluate_conditions(
        self,
        schedule: Requirement | AlternateRequirement,
        vaccine_code: str,
        doses: list[Immunization],
        birth_date: date | None,
        warnings: list[str],
    ) -> tuple[ConditionResult, list[ConditionEvaluation]]:
        """AND of a schedule's date and interval conditions."""
        date_evaluations = self.date_evaluator.evaluate_all_detailed(
            schedule.date_conditions, doses, birth_date
        )
        interval_evaluations = self.interval_evaluator.evaluate_all_detailed(
            schedule.interval_conditions, doses
        )
        evaluations = date_evaluations + interval_evaluations

        if any(e.reason == date_eval.REASON_MISSING_BIRTH_DATE for e in date_evaluations):
            warning = f"Cannot evaluate date conditions for {vaccine_code} - missing birth date"
            if warning not in warnings:
                warnings.append(warning)

        combined = ConditionResult.all_of(
            [
                ConditionResult.all_of(e.result for e in date_evaluations),
                ConditionResult.all_of(e.result for e in interval_evaluations),
            ]
        )
        return combined, evaluations

    @staticmethod
    def _undetermined_condition(
        requirement: Requirement,
        evaluations: list[ConditionEvaluation],
    ) -> UndeterminedCondition:
        unknown = [e for e in evaluations if e.result is ConditionResult.UNDETERMINED]
        reason = "Cannot evaluate date or interval conditions"
        condition = requirement.description
        if unknown:
            reason = unknown[0].reason or reason
            condition = condition or unknown[0].condition
        return UndeterminedCondition(
            vaccine_code=requirement.vaccine_code,
            condition=condition,
            reason=reason,
            details="; ".join(f"{e.condition}: {e.reason}" for e in unknown) or None,
            suggestion=SUGGESTIONS.get(reason, DEFAULT_SUGGESTION),
        )

    @staticmethod
    def _exemptions_by_vaccine(patient: Patient, warnings: list[str]) -> dict[str, str]:
        """Exemption type per vaccine code; the last one listed wins."""
        exemptions: dict[str, str] = {}
        for exception in patient.exceptions:
            previous = exemptions.get(exception.vaccine_code)
            if previous is not None and previous != exception.exception_type:
                logger.warning(
                    "Multiple exemptions for vaccine, using the last one",
                    vaccine_code=exception.vaccine_code,
                    ignored=previous,
                    used=exception.exception_type,
                )
                warnings.append(
                    f"Multiple exemptions for {exception.vaccine_code}; "
                    f"using {exception.exception_type}"
                )
            exemptions[exception.vaccine_code] = exception.exception_type
        return exemptions

    @staticmethod
    def _tally(result: ResolutionResult, outcome: RequirementOutcome) -> None:
        if outcome.alternate_attempted:
            result.alternate_attempted += 1
            if outcome.path is ResolutionPath.ALTERNATE:
                result.alternate_satisfied += 1
            elif outcome.path is ResolutionPath.PRIMARY:
                result.primary_fallbacks += 1

        if outcome.result is ConditionResult.SATISFIED:
            result.satisfied += 1
        elif outcome.result is ConditionResult.NOT_SATISFIED:
            result.unsatisfied += 1
            if outcome.unmet is not None:
                result.unmet.append(outcome.unmet)
        else:
            result.undetermined_count += 1
            if outcome.undetermined is not None:
                result.undetermined.append(outcome.undetermined)


class ValidationService:
    """
    Validate patients against the requirements catalogue.

    Looks the requirements up once per call, resolves them, and shapes
    the ValidationResponse.
    """

    def __init__(
        self,
        requirements_service: RequirementsService | None = None,
        resolver: RequirementResolver | None = None,
        alternate_mode: AlternateBehaviorMode | None = None,
    ):
        settings = get_settings()
        self.requirements_service = requirements_service or get_requirements_service()
        self.resolver = resolver or RequirementResolver()
        self.alternate_mode = alternate_mode or settings.alternate_behavior_mode
        self.validator_version = settings.validator_version

    def validate(
        self,
        patient: Patient,
        state: str,
        age: int | None = None,
        school_year: str | None = None,
        include_details: bool = False,
    ) -> ValidationResponse:
        """
        Validate one patient.

        Args:
            patient: Patient record.
            state: State code (e.g. "MA").
            age: Age in years; computed from the birth date when omitted.
            school_year: School-year key; takes precedence over age.
            include_details: Populate the unmet/undetermined detail lists.
        """
        logger.info(
            "Validating patient",
            patient_id=patient.id,
            state=state,
            school_year=school_year,
            alternate_mode=self.alternate_mode.value,
        )

        effective_age = age
        if effective_age is None and school_year is None:
            effective_age = calculate_age(patient.parsed_birth_date)

        if school_year is not None:
            requirements = self.requirements_service.get_requirements_by_school_year(state, school_year)
        else:
            requirements = self.requirements_service.get_requirements_by_age(state, effective_age)

        if not requirements:
            logger.warning(
                "No requirements found",
                state=state,
                age=effective_age,
                school_year=school_year,
            )
            return ValidationResponse(
                patient_id=patient.id,
                status=ComplianceStatus.UNDETERMINED,
                message="No validation requirements found for the specified criteria",
                undetermined_conditions=[
                    UndeterminedCondition(
                        reason="No requirements found",
                        details=f"State: {state}, SchoolYear: {school_year}, Age: {effective_age}",
                        suggestion="Verify state code and school year are correct",
                    )
                ],
                metadata=self._metadata(state, school_year, effective_age, 0, None),
            )

        resolution = self.resolver.resolve(patient, requirements, self.alternate_mode)
        response = self._build_response(
            patient.id, resolution, state, school_year, effective_age, len(requirements), include_details
        )

        logger.info("Validation complete", patient_id=patient.id, status=response.status.value)
        return response

    def validate_batch(
        self,
        patients: Sequence[Patient],
        state: str,
        age: int | None = None,
        school_year: str | None = None,
        include_details: bool = False,
    ) -> list[ValidationResponse]:
        """
        Validate patients independently, preserving input order.

        A failure for one patient becomes that patient's UNDETERMINED
        result; the rest of the batch still runs.
        """
        logger.info("Batch validation started", state=state, patient_count=len(patients))

        responses = []
        for patient in patients:
            try:
                responses.append(self.validate(patient, state, age, school_year, include_details))
            except Exception as e:
                logger.exception(
                    "Validation failed for patient",
                    patient_id=patient.id,
                    error=str(e),
                )
                responses.append(
                    ValidationResponse(
                        patient_id=patient.id,
                        status=ComplianceStatus.UNDETERMINED,
                        message=f"Validation failed: {e}",
                    )
                )

        logger.info("Batch validation complete", state=state, patient_count=len(responses))
        return responses

    def _build_response(
        self,
        patient_id: str,
        resolution: ResolutionResult,
        state: str,
        school_year: str | None,
        age: int | None,
        total_requirements: int,
        include_details: bool,
    ) -> ValidationResponse:
        if resolution.status is ComplianceStatus.UNDETERMINED:
            message = (
                f"Cannot determine compliance: {resolution.undetermined_count} "
                "requirement(s) could not be evaluated"
            )
        elif resolution.status is ComplianceStatus.INVALID:
            message = (
                f"Patient does not meet requirements: {resolution.unsatisfied} "
                "requirement(s) not satisfied"
            )
        else:
            message = "Patient meets all immunization requirements"

        response = ValidationResponse(
            patient_id=patient_id,
            status=resolution.status,
            message=message,
            warnings=resolution.warnings or None,
            metadata=self._metadata(state, school_year, age, total_requirements, resolution),
        )

        if include_details:
            response.unmet_requirements = resolution.unmet or None
            response.undetermined_conditions = resolution.undetermined or None

        return response

    def _metadata(
        self,
        state: str,
        school_year: str | None,
        age: int | None,
        total_requirements: int,
        resolution: ResolutionResult | None,
    ) -> ValidationMetadata:
        return ValidationMetadata(
            state=state,
            school_year=school_year,
            age=age,
            total_requirements=total_requirements,
            satisfied_requirements=resolution.satisfied if resolution else 0,
            unsatisfied_requirements=resolution.unsatisfied if resolution else 0,
            undetermined_requirements=resolution.undetermined_count if resolution else 0,
            alternate_mode=self.alternate_mode.value,
            validator_version=self.validator_version,
        )


def calculate_age(birth_date: date | None, today: date | None = None) -> int | None:
    """Whole years from birth_date to today, or None without a birth date."""
    if birth_date is None:
        return None
    return relativedelta(today or date.today(), birth_date).years


# Singleton instance
_service_instance: ValidationService | None = None


def get_validation_service() -> ValidationService:
    """Get the singleton validation service instance."""
    global _service_instance
    if _service_instance is None:
        _service_instance = ValidationService()
    return _service_instance
