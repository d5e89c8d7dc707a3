"""
Error taxonomy for the record engine.

MalformedData is recovered inside the store; InvalidImportFile,
MissingRequiredField and InvalidPayload reach the caller as rejected
operations. Duplicate CSV rows and dangling appointment references are not errors.
"""

from __future__ import annotations


class ClinicDeskError(Exception):
    """Base exception for all record-engine errors."""
    pass


class MalformedData(ClinicDeskError):
    """A persisted key could not be decoded."""

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        self.reason = reason
        message = f"Malformed data under key {key!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidImportFile(ClinicDeskError):
    """CSV without a usable header row, or an import document that is not JSON."""
    pass


class MissingRequiredField(ClinicDeskError):
    """An add operation was called without one of its required fields."""

    def __init__(self, fields: list[str], message: str | None = None):
        self.fields = fields
        super().__init__(message or f"Missing required field(s): {', '.join(fields)}")


class InvalidPayload(ClinicDeskError):
    """An operation received something other than a mapping of fields."""

    def __init__(self, operation: str, received: object):
        self.operation = operation
        super().__init__(f"Invalid {operation}: expected an object, got {type(received).__name__}")
