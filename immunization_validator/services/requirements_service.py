"""
Requirements catalogue.

Maps a state plus an age or school year to the list of requirements a
patient is validated against. The catalogue is a YAML document:

    states:
      MA:
        age:
          - age: 5
            vaccineCode: DTaP
            minDoses: 5
            ...
        schoolYear:
          - schoolYear: K-6
            vaccineCode: DTaP
            ...

Age lookup is a floor match (nearest configured age not above the
requested age); school-year lookup is an exact key match. Condition
strings are parsed at load time so bad rules show up in the startup log.
"""

from bisect import bisect_right
from collections import defaultdict
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from immunization_validator.config.config import get_settings
from immunization_validator.config.logging_config import get_logger
from immunization_validator.models.requirement_models import Requirement, Unparsable
from immunization_validator.services.condition_parser import (
    parse_date_condition,
    parse_interval_condition,
)
from immunization_validator.services.exceptions import RequirementsLoadError

logger = get_logger(__name__)

# Paths
DEFAULT_REQUIREMENTS_PATH = Path(__file__).parent.parent / "data" / "requirements.yaml"


class StateRequirements:
    """Requirements for one state, indexed by age and by school year."""

    def __init__(
        self,
        state: str,
        by_age: dict[int, list[Requirement]] | None = None,
        by_school_year: dict[str, list[Requirement]] | None = None,
    ):
        self.state = state
        self.by_age = by_age or {}
        self.by_school_year = by_school_year or {}
        self._ages = sorted(self.by_age)

    def for_age(self, age: int) -> list[Requirement]:
        position = bisect_right(self._ages, age)
        if position == 0:
            return []
        return list(self.by_age[self._ages[position - 1]])

    def for_school_year(self, school_year: str) -> list[Requirement]:
        return list(self.by_school_year.get(school_year, []))


class RequirementsService:
    """Look up requirements by state and age or school year."""

    def __init__(self, states: dict[str, StateRequirements]):
        self._states = states

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "RequirementsService":
        """
        Build the catalogue from a {state: {"age": [...], "schoolYear": [...]}} mapping.

        Raises:
            RequirementsLoadError: If an entry is malformed.
        """
        if not isinstance(data, dict):
            raise RequirementsLoadError("Requirements catalogue must be a mapping of states")

        states = {}
        for state, sections in data.items():
            if not isinstance(sections, dict):
                raise RequirementsLoadError(f"State {state} must map to 'age' and/or 'schoolYear' lists")

            by_age: dict[int, list[Requirement]] = defaultdict(list)
            for entry in sections.get("age") or []:
                age = _entry_key(entry, "age", state)
                try:
                    age = int(age)
                except (TypeError, ValueError) as e:
                    raise RequirementsLoadError(f"Invalid age {age!r} for state {state}") from e
                by_age[age].append(_build_requirement(entry, state))

            by_school_year: dict[str, list[Requirement]] = defaultdict(list)
            for entry in sections.get("schoolYear") or []:
                school_year = str(_entry_key(entry, "schoolYear", state))
                by_school_year[school_year].append(_build_requirement(entry, state))

            states[str(state)] = StateRequirements(str(state), dict(by_age), dict(by_school_year))

        service = cls(states)
        service._log_unparsable_conditions()
        logger.info("Loaded immunization requirements", state_count=len(states))
        return service

    @classmethod
    def from_yaml(cls, path: Path | str) -> "RequirementsService":
        """
        Load the catalogue from a YAML file.

        Raises:
            RequirementsLoadError: If the file is missing or malformed.
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise RequirementsLoadError(f"Requirements file not found: {path}", source=str(path)) from e
        except yaml.YAMLError as e:
            raise RequirementsLoadError(f"Invalid YAML in {path}: {e}", source=str(path)) from e

        if not isinstance(document, dict):
            raise RequirementsLoadError(f"Requirements file {path} is empty or not a mapping", source=str(path))

        logger.info("Reading requirements catalogue", path=str(path))
        return cls.from_mapping(document.get("states", document))

    def get_requirements_by_age(self, state: str, age: int | None) -> list[Requirement]:
        """Requirements for the largest configured age not above `age`."""
        state_requirements = self._states.get(state)
        if state_requirements is None:
            logger.warning("No requirements found for state", state=state)
            return []
        if age is None:
            logger.warning("No age available for requirement lookup", state=state)
            return []

        requirements = state_requirements.for_age(age)
        if not requirements:
            logger.warning("No requirements found for state and age", state=state, age=age)
        return requirements

    def get_requirements_by_school_year(self, state: str, school_year: str) -> list[Requirement]:
        """Requirements for an exact school-year key."""
        state_requirements = self._states.get(state)
        if state_requirements is None:
            logger.warning("No requirements found for state", state=state)
            return []

        requirements = state_requirements.for_school_year(school_year)
        if not requirements:
            logger.warning(
                "No requirements found for state and school year",
                state=state,
                school_year=school_year,
            )
        return requirements

    def has_requirements(self, state: str) -> bool:
        return state in self._states

    def states(self) -> list[str]:
        return sorted(self._states)

    def _log_unparsable_conditions(self) -> None:
        """Warn about condition strings no evaluator will understand."""
        seen: set[str] = set()
        for state_requirements in self._states.values():
            groups = list(state_requirements.by_age.values()) + list(state_requirements.by_school_year.values())
            for requirements in groups:
                for requirement in requirements:
                    date_texts, interval_texts = requirement.all_condition_texts()
                    parsed_conditions = [parse_date_condition(t) for t in date_texts]
                    parsed_conditions += [parse_interval_condition(t) for t in interval_texts]
                    for parsed in parsed_conditions:
                        if isinstance(parsed, Unparsable) and parsed.text not in seen:
                            seen.add(parsed.text)
                            logger.warning(
                                "Unparsable condition in requirements catalogue",
                                state=state_requirements.state,
                                vaccine_code=requirement.vaccine_code,
                                condition=parsed.text,
                                reason=parsed.reason,
                            )


def _entry_key(entry: Any, key: str, state: str) -> Any:
    if not isinstance(entry, dict) or entry.get(key) is None:
        raise RequirementsLoadError(f"Requirement entry for state {state} is missing '{key}'")
    return entry[key]


def _build_requirement(entry: dict[str, Any], state: str) -> Requirement:
    fields = {k: v for k, v in entry.items() if k not in ("age", "schoolYear")}
    try:
        return Requirement.model_validate(fields)
    except ValidationError as e:
        raise RequirementsLoadError(
            f"Invalid requirement for state {state}: {e.error_count()} error(s)"
        ) from e


# Singleton instance
_service_instance: RequirementsService | None = None


def get_requirements_service() -> RequirementsService:
    """Get the singleton requirements service, loading the configured catalogue."""
    global _service_instance
    if _service_instance is None:
        settings = get_settings()
        _service_instance = RequirementsService.from_yaml(
            settings.requirements_file or DEFAULT_REQUIREMENTS_PATH
        )
    return _service_instance
