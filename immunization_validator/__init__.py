"""
Immunization Validator

Checks patient immunization records against state school-entry
requirements, reporting VALID, INVALID or UNDETERMINED compliance.
"""

__version__ = "3.0.0"
