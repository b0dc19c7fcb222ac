"""Tests for requirement resolution and the validation service."""

from datetime import date

import pytest

from conftest import make_doses, make_patient
from immunization_validator.config.config import AlternateBehaviorMode
from immunization_validator.models.models import ResolutionPath, UnmetReason
from immunization_validator.models.requirement_models import AlternateRequirement, Requirement
from immunization_validator.models.results import ComplianceStatus, ConditionResult
from immunization_validator.services.requirements_service import RequirementsService
from immunization_validator.services.validation_service import (
    INVALID_BIRTH_DATE_WARNING,
    RequirementResolver,
    ValidationService,
    calculate_age,
)

FLEXIBLE = AlternateBehaviorMode.FLEXIBLE
STRICT = AlternateBehaviorMode.STRICT


def early_fourth_dtap() -> list:
    """4 DTaP doses, the 4th before the 4th birthday of a 2019-01-01 birth."""
    return make_doses("DTaP", "2019-03-01", "2019-05-01", "2019-07-01", "2022-06-01")


class TestExemptions:
    def test_accepted_exemption_satisfies_without_doses(self, resolver, dtap_requirement):
        patient = make_patient(exceptions=[("DTaP", "RELIGIOUS_EXEMPTION")])
        result = resolver.resolve(patient, [dtap_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.VALID
        assert result.outcomes[0].path is ResolutionPath.EXEMPTION
        assert result.outcomes[0].found_doses == 0

    def test_unaccepted_exemption_type_is_ignored(self, resolver, dtap_requirement):
        patient = make_patient(exceptions=[("DTaP", "SIGNED_WAIVER")])
        result = resolver.resolve(patient, [dtap_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.INVALID
        assert result.unmet[0].reason is UnmetReason.INSUFFICIENT_DOSES

    def test_exemption_for_other_vaccine_is_ignored(self, resolver, dtap_requirement):
        patient = make_patient(exceptions=[("MMR", "RELIGIOUS_EXEMPTION")])
        assert resolver.resolve(patient, [dtap_requirement], FLEXIBLE).status is ComplianceStatus.INVALID

    def test_last_exemption_for_a_vaccine_wins(self, resolver, dtap_requirement):
        accepted_last = make_patient(exceptions=[("DTaP", "SIGNED_WAIVER"), ("DTaP", "RELIGIOUS_EXEMPTION")])
        result = resolver.resolve(accepted_last, [dtap_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.VALID
        assert any("Multiple exemptions for DTaP" in w for w in result.warnings)

        accepted_first = make_patient(exceptions=[("DTaP", "RELIGIOUS_EXEMPTION"), ("DTaP", "SIGNED_WAIVER")])
        assert resolver.resolve(accepted_first, [dtap_requirement], FLEXIBLE).status is ComplianceStatus.INVALID


class TestAlternateModes:
    def test_strict_mode_does_not_consult_primary(self, resolver, dtap_requirement):
        result = resolver.resolve(make_patient(*early_fourth_dtap()), [dtap_requirement], STRICT)
        outcome = result.outcomes[0]
        assert result.status is ComplianceStatus.INVALID
        assert outcome.path is ResolutionPath.STRICT_ALTERNATE
        assert outcome.unmet.reason is UnmetReason.ALTERNATE_NOT_SATISFIED
        assert "STRICT" in outcome.unmet.description
        assert result.primary_fallbacks == 0

    def test_flexible_mode_falls_back_to_primary(self, resolver, dtap_requirement):
        result = resolver.resolve(make_patient(*early_fourth_dtap()), [dtap_requirement], FLEXIBLE)
        outcome = result.outcomes[0]
        assert result.status is ComplianceStatus.INVALID
        assert outcome.path is ResolutionPath.PRIMARY
        assert outcome.unmet.reason is UnmetReason.INSUFFICIENT_DOSES
        assert (outcome.unmet.required_doses, outcome.unmet.found_doses) == (5, 4)
        assert result.alternate_attempted == 1
        assert result.primary_fallbacks == 1

    @pytest.mark.parametrize("mode", [FLEXIBLE, STRICT])
    def test_alternate_satisfied(self, resolver, dtap_requirement, mode):
        doses = make_doses("DTaP", "2019-03-01", "2019-05-01", "2019-07-01", "2023-01-01")
        result = resolver.resolve(make_patient(*doses), [dtap_requirement], mode)
        assert result.status is ComplianceStatus.VALID
        assert result.outcomes[0].path is ResolutionPath.ALTERNATE
        assert result.alternate_satisfied == 1

    def test_strict_forfeits_primary_even_with_enough_doses(self, resolver, dtap_requirement):
        # 5 doses also meet the alternate threshold, so the alternate is tried first
        five = make_doses("DTaP", "2019-03-01", "2019-05-01", "2019-07-01", "2020-06-01", "2023-03-01")

        flexible = resolver.resolve(make_patient(*five), [dtap_requirement], FLEXIBLE)
        assert flexible.status is ComplianceStatus.VALID
        assert flexible.outcomes[0].path is ResolutionPath.PRIMARY

        strict = resolver.resolve(make_patient(*five), [dtap_requirement], STRICT)
        assert strict.status is ComplianceStatus.INVALID
        assert strict.outcomes[0].path is ResolutionPath.STRICT_ALTERNATE

    def test_strict_with_unattempted_alternate_checks_primary(self, resolver, dtap_requirement):
        doses = make_doses("DTaP", "2019-03-01", "2019-05-01")
        result = resolver.resolve(make_patient(*doses), [dtap_requirement], STRICT)
        outcome = result.outcomes[0]
        assert outcome.path is ResolutionPath.PRIMARY
        assert not outcome.alternate_attempted
        assert outcome.unmet.reason is UnmetReason.INSUFFICIENT_DOSES

    def test_undetermined_alternate_does_not_stop_the_scan(self, resolver):
        requirement = Requirement(
            vaccine_code="Polio",
            min_doses=4,
            alternate_requirements=[
                AlternateRequirement(min_doses=3, date_conditions=["3rd dose on or after 4th birthday"]),
                AlternateRequirement(min_doses=3, interval_conditions=["at least 28 days between doses"]),
            ],
        )
        patient = make_patient(*make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01"), birth_date=None)
        for mode in (FLEXIBLE, STRICT):
            result = resolver.resolve(patient, [requirement], mode)
            assert result.status is ComplianceStatus.VALID
            assert result.outcomes[0].path is ResolutionPath.ALTERNATE

    def test_strict_undetermined_alternate_is_not_satisfied(self, resolver, dtap_requirement):
        patient = make_patient(*early_fourth_dtap(), birth_date=None)
        result = resolver.resolve(patient, [dtap_requirement], STRICT)
        assert result.outcomes[0].result is ConditionResult.NOT_SATISFIED
        assert result.outcomes[0].path is ResolutionPath.STRICT_ALTERNATE

    def test_alternate_and_primary_conditions_fail(self, resolver):
        requirement = Requirement(
            vaccine_code="Polio",
            min_doses=4,
            date_conditions=["4th dose on or after 4th birthday"],
            alternate_requirements=[
                AlternateRequirement(min_doses=3, date_conditions=["3rd dose on or after 4th birthday"]),
            ],
        )
        doses = make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2021-01-01")
        result = resolver.resolve(make_patient(*doses), [requirement], FLEXIBLE)
        unmet = result.unmet[0]
        assert unmet.reason is UnmetReason.ALTERNATE_AND_PRIMARY_NOT_SATISFIED
        assert "neither alternate nor primary" in unmet.description

    def test_alternate_vaccine_code(self, resolver):
        requirement = Requirement(
            vaccine_code="HepB",
            min_doses=3,
            alternate_requirements=[
                AlternateRequirement(
                    alternate_vaccine_code="Heplisav-B",
                    min_doses=2,
                    date_conditions=["1st dose on or after 18th birthday"],
                ),
            ],
        )
        patient = make_patient(
            *make_doses("Heplisav-B", "2020-01-01", "2020-02-15"),
            birth_date="2000-06-01",
        )
        result = resolver.resolve(patient, [requirement], STRICT)
        assert result.status is ComplianceStatus.VALID
        assert result.outcomes[0].path is ResolutionPath.ALTERNATE
        assert result.outcomes[0].found_doses == 0


class TestPrimarySchedule:
    def test_end_to_end_polio(self, resolver, polio_requirement):
        patient = make_patient(*make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2023-02-01"))
        result = resolver.resolve(patient, [polio_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.VALID
        assert result.satisfied == 1
        assert result.unmet == []
        assert result.undetermined == []

    def test_dose_order_does_not_matter(self, resolver, polio_requirement):
        doses = make_doses("Polio", "2023-02-01", "2019-07-01", "2019-03-01", "2019-05-01")
        assert resolver.resolve(make_patient(*doses), [polio_requirement], FLEXIBLE).status is ComplianceStatus.VALID

    def test_unreadable_dose_date_is_undetermined_in_any_order(self, resolver, polio_requirement):
        doses = make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2023-02-01", "bad-date")
        for ordered in (doses, list(reversed(doses))):
            result = resolver.resolve(make_patient(*ordered), [polio_requirement], FLEXIBLE)
            assert result.status is ComplianceStatus.UNDETERMINED
            assert result.unmet == []
            assert result.undetermined[0].reason == "Invalid immunization date"

    def test_conditions_not_met(self, resolver, polio_requirement):
        doses = make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2019-09-01")
        result = resolver.resolve(make_patient(*doses), [polio_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.INVALID
        assert result.unmet[0].reason is UnmetReason.CONDITIONS_NOT_MET
        assert result.unmet[0].found_doses == 4

    def test_missing_birth_date_is_undetermined(self, resolver, polio_requirement):
        plain = Requirement(vaccine_code="Tdap", min_doses=1)
        patient = make_patient(
            *make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2023-02-01"),
            *make_doses("Tdap", "2030-01-01"),
            birth_date=None,
        )
        result = resolver.resolve(patient, [polio_requirement, plain], FLEXIBLE)
        assert result.status is ComplianceStatus.UNDETERMINED
        assert result.satisfied == 1
        undetermined = result.undetermined[0]
        assert undetermined.vaccine_code == "Polio"
        assert undetermined.reason == "Missing birth date"
        assert "birth date" in undetermined.suggestion
        assert "Cannot evaluate date conditions for Polio - missing birth date" in result.warnings

    def test_insufficient_doses_is_not_undetermined_without_birth_date(self, resolver, polio_requirement):
        patient = make_patient(*make_doses("Polio", "2019-03-01"), birth_date=None)
        result = resolver.resolve(patient, [polio_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.INVALID

    def test_invalid_birth_date_warns(self, resolver, polio_requirement):
        patient = make_patient(
            *make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2023-02-01"),
            birth_date="01/01/2019",
        )
        result = resolver.resolve(patient, [polio_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.UNDETERMINED
        assert INVALID_BIRTH_DATE_WARNING in result.warnings

    def test_unparsable_condition_is_undetermined(self, resolver):
        requirement = Requirement(vaccine_code="MMR", min_doses=1, interval_conditions=["space doses well"])
        result = resolver.resolve(make_patient(*make_doses("MMR", "2020-01-01")), [requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.UNDETERMINED
        assert result.undetermined[0].reason == "Unparsable condition"

    def test_zero_min_doses(self, resolver):
        requirement = Requirement(vaccine_code="Flu", min_doses=0)
        assert resolver.resolve(make_patient(), [requirement], FLEXIBLE).status is ComplianceStatus.VALID


class TestRollup:
    def test_empty_requirements_are_undetermined(self, resolver):
        assert resolver.resolve(make_patient(), [], FLEXIBLE).status is ComplianceStatus.UNDETERMINED
        assert resolver.resolve(make_patient(), None, FLEXIBLE).status is ComplianceStatus.UNDETERMINED

    def test_undetermined_dominates_invalid(self, resolver, polio_requirement):
        missing = Requirement(vaccine_code="MMR", min_doses=2)
        patient = make_patient(
            *make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2023-02-01"),
            birth_date=None,
        )
        result = resolver.resolve(patient, [missing, polio_requirement], FLEXIBLE)
        assert result.status is ComplianceStatus.UNDETERMINED
        assert (result.unsatisfied, result.undetermined_count) == (1, 1)


class TestValidationService:
    def test_valid_patient(self, validation_service, compliant_k6_patient):
        response = validation_service.validate(compliant_k6_patient, "MA", school_year="K-6")
        assert response.status is ComplianceStatus.VALID
        assert response.valid is True
        assert response.message == "Patient meets all immunization requirements"
        assert response.metadata.total_requirements == 2
        assert response.metadata.satisfied_requirements == 2
        assert response.metadata.alternate_mode == "FLEXIBLE"

    def test_details_only_when_requested(self, validation_service):
        patient = make_patient(*make_doses("Polio", "2019-03-01"))
        simple = validation_service.validate(patient, "MA", school_year="K-6")
        assert simple.status is ComplianceStatus.INVALID
        assert simple.valid is False
        assert simple.unmet_requirements is None
        assert simple.metadata.unsatisfied_requirements == 2

        detailed = validation_service.validate(patient, "MA", school_year="K-6", include_details=True)
        assert [u.vaccine_code for u in detailed.unmet_requirements] == ["Polio", "MMR"]
        assert detailed.message == "Patient does not meet requirements: 2 requirement(s) not satisfied"

    def test_undetermined_message(self, validation_service, compliant_k6_patient):
        patient = compliant_k6_patient.model_copy(update={"birth_date": None})
        response = validation_service.validate(patient, "MA", school_year="K-6", include_details=True)
        assert response.status is ComplianceStatus.UNDETERMINED
        assert response.valid is False
        assert response.message == "Cannot determine compliance: 1 requirement(s) could not be evaluated"
        assert response.undetermined_conditions[0].vaccine_code == "Polio"

    def test_no_requirements_is_undetermined(self, validation_service, compliant_k6_patient):
        response = validation_service.validate(compliant_k6_patient, "MA", school_year="college")
        assert response.status is ComplianceStatus.UNDETERMINED
        assert response.message == "No validation requirements found for the specified criteria"
        assert response.undetermined_conditions[0].reason == "No requirements found"

    def test_unknown_state_is_undetermined(self, validation_service, compliant_k6_patient):
        response = validation_service.validate(compliant_k6_patient, "ZZ", age=6)
        assert response.status is ComplianceStatus.UNDETERMINED

    def test_age_floor_lookup(self, validation_service, compliant_k6_patient):
        response = validation_service.validate(compliant_k6_patient, "MA", age=7)
        assert response.metadata.total_requirements == 2
        assert response.status is ComplianceStatus.VALID

        too_young = validation_service.validate(compliant_k6_patient, "MA", age=4)
        assert too_young.status is ComplianceStatus.UNDETERMINED

    def test_age_from_birth_date(self, validation_service, requirements_service, compliant_k6_patient):
        response = validation_service.validate(compliant_k6_patient, "MA")
        age = calculate_age(date(2019, 1, 1))
        assert response.metadata.age == age
        assert response.metadata.total_requirements == len(requirements_service.get_requirements_by_age("MA", age))

    def test_strict_mode_override(self, resolver):
        requirements = RequirementsService.from_mapping(
            {
                "MA": {
                    "schoolYear": [
                        {
                            "schoolYear": "K-6",
                            "vaccineCode": "DTaP",
                            "minDoses": 5,
                            "alternateRequirements": [
                                {"minDoses": 4, "dateConditions": ["4th dose on or after 4th birthday"]}
                            ],
                        }
                    ]
                }
            }
        )
        service = ValidationService(requirements, resolver, alternate_mode=STRICT)
        response = service.validate(make_patient(*early_fourth_dtap()), "MA", school_year="K-6", include_details=True)
        assert response.unmet_requirements[0].reason is UnmetReason.ALTERNATE_NOT_SATISFIED
        assert response.metadata.alternate_mode == "STRICT"


class ExplodingResolver(RequirementResolver):
    def resolve(self, patient, requirements, alternate_mode=FLEXIBLE):
        if patient.id == "explode-0001":
            raise RuntimeError("resolver failure")
        return super().resolve(patient, requirements, alternate_mode)


class TestBatch:
    def test_results_keep_input_order(self, validation_service, compliant_k6_patient):
        failing = make_patient(*make_doses("Polio", "2019-03-01"), patient_id="failing-0002")
        responses = validation_service.validate_batch([failing, compliant_k6_patient], "MA", school_year="K-6")
        assert [r.patient_id for r in responses] == ["failing-0002", "patient-0001"]
        assert [r.status for r in responses] == [ComplianceStatus.INVALID, ComplianceStatus.VALID]

    def test_failure_is_isolated_to_one_patient(self, requirements_service, compliant_k6_patient):
        service = ValidationService(requirements_service, ExplodingResolver(), alternate_mode=FLEXIBLE)
        exploding = make_patient(patient_id="explode-0001")
        responses = service.validate_batch(
            [compliant_k6_patient, exploding, compliant_k6_patient], "MA", school_year="K-6"
        )
        assert len(responses) == 3
        assert responses[0].status is ComplianceStatus.VALID
        assert responses[1].status is ComplianceStatus.UNDETERMINED
        assert responses[1].message == "Validation failed: resolver failure"
        assert responses[2].status is ComplianceStatus.VALID


class TestCalculateAge:
    def test_whole_years(self):
        assert calculate_age(date(2019, 1, 1), today=date(2023, 12, 31)) == 4
        assert calculate_age(date(2019, 1, 1), today=date(2024, 1, 1)) == 5

    def test_missing_birth_date(self):
        assert calculate_age(None) is None
