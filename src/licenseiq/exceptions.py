"""
Exception hierarchy for LicenseIQ.
"""


class LicenseIQError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class LLMResponseError(LicenseIQError):
    """Raised when an LLM response carries no usable JSON."""


class FormulaValidationError(LicenseIQError):
    """Raised when a formula tree is malformed or nested too deeply."""


class PersistenceError(LicenseIQError):
    """Raised when a database write or read fails."""
