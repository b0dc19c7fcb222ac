"""Domain exceptions for the immunization validator."""


class ValidatorError(Exception):
    """Base class for validator errors."""


class RequirementsLoadError(ValidatorError):
    """The requirements catalogue could not be read or is malformed."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source
