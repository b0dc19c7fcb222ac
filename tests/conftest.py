"""Shared fixtures for the immunization validator tests."""

from datetime import date

import pytest

from immunization_validator.config.config import AlternateBehaviorMode
from immunization_validator.models.models import Immunization, Patient, VaccineException
from immunization_validator.models.requirement_models import AlternateRequirement, Requirement
from immunization_validator.services.date_condition_evaluator import DateConditionEvaluator
from immunization_validator.services.interval_condition_evaluator import IntervalConditionEvaluator
from immunization_validator.services.requirements_service import RequirementsService
from immunization_validator.services.validation_service import RequirementResolver, ValidationService


def make_doses(vaccine_code: str, *dates: str) -> list[Immunization]:
    return [Immunization(vaccine_code=vaccine_code, occurrence_date=d) for d in dates]


def make_patient(
    *doses: Immunization,
    birth_date: str | None = "2019-01-01",
    exceptions: list[tuple[str, str]] | None = None,
    patient_id: str = "patient-0001",
) -> Patient:
    return Patient(
        id=patient_id,
        birth_date=birth_date,
        immunizations=list(doses),
        exceptions=[
            VaccineException(vaccine_code=code, exception_type=kind) for code, kind in (exceptions or [])
        ],
    )


@pytest.fixture
def birth_date() -> date:
    return date(2019, 1, 1)


@pytest.fixture
def date_evaluator() -> DateConditionEvaluator:
    return DateConditionEvaluator()


@pytest.fixture
def interval_evaluator() -> IntervalConditionEvaluator:
    return IntervalConditionEvaluator()


@pytest.fixture
def resolver() -> RequirementResolver:
    return RequirementResolver(DateConditionEvaluator(), IntervalConditionEvaluator())


@pytest.fixture
def dtap_requirement() -> Requirement:
    """5 primary doses, or 4 with the 4th on or after the 4th birthday."""
    return Requirement(
        vaccine_code="DTaP",
        min_doses=5,
        description="5 doses of DTaP",
        accepted_exceptions=["MEDICAL_CONTRAINDICATION", "RELIGIOUS_EXEMPTION"],
        alternate_requirements=[
            AlternateRequirement(
                min_doses=4,
                date_conditions=["4th dose on or after 4th birthday"],
            )
        ],
    )


@pytest.fixture
def polio_requirement() -> Requirement:
    return Requirement(
        vaccine_code="Polio",
        min_doses=4,
        description="4 doses of Polio",
        date_conditions=["4th dose on or after 4th birthday"],
        interval_conditions=["at least 6 months between last two doses"],
    )


@pytest.fixture
def requirements_mapping() -> dict:
    """Small catalogue with ages 5 and 12 and a K-6 school year."""
    k6_polio = {
        "vaccineCode": "Polio",
        "minDoses": 4,
        "description": "4 doses of Polio",
        "dateConditions": ["4th dose on or after 4th birthday"],
        "intervalConditions": ["at least 6 months between last two doses"],
        "acceptedExceptions": ["RELIGIOUS_EXEMPTION"],
    }
    k6_mmr = {
        "vaccineCode": "MMR",
        "minDoses": 2,
        "description": "2 doses of MMR",
        "intervalConditions": ["at least 28 days between doses"],
    }
    return {
        "MA": {
            "age": [
                {**k6_polio, "age": 5},
                {**k6_mmr, "age": 5},
                {"age": 12, "vaccineCode": "Tdap", "minDoses": 1, "description": "1 dose of Tdap"},
            ],
            "schoolYear": [
                {**k6_polio, "schoolYear": "K-6"},
                {**k6_mmr, "schoolYear": "K-6"},
            ],
        }
    }


@pytest.fixture
def requirements_service(requirements_mapping) -> RequirementsService:
    return RequirementsService.from_mapping(requirements_mapping)


@pytest.fixture
def validation_service(requirements_service, resolver) -> ValidationService:
    return ValidationService(
        requirements_service=requirements_service,
        resolver=resolver,
        alternate_mode=AlternateBehaviorMode.FLEXIBLE,
    )


@pytest.fixture
def compliant_k6_patient() -> Patient:
    return make_patient(
        *make_doses("Polio", "2019-03-01", "2019-05-01", "2019-07-01", "2023-02-01"),
        *make_doses("MMR", "2020-01-15", "2023-02-01"),
    )
