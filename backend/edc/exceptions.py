"""Error taxonomy for the data capture core."""

from typing import Optional


class SchemaError(ValueError):
    """A form schema or one of its fields is structurally malformed."""

    def __init__(self, message: str, form: Optional[str] = None, field: Optional[str] = None):
        self.message = message
        self.form = form
        self.field = field
        location = ".".join(part for part in (form, field) if part)
        super().__init__(f"{location}: {message}" if location else message)


class AuditTrailUnavailable(RuntimeError):
    """An audit event could not be durably recorded.

    Raised by ``edc.audit.require_recorded`` so that the business action that
    triggered the event is rolled back instead of proceeding unaudited.
    """

    def __init__(self, failure):
        self.failure = failure
        super().__init__(f"audit trail unavailable: {failure.reason}")


class IntegrityViolation(Exception):
    """The audit hash chain is broken."""

    def __init__(self, first_break_sequence: int, errors=None):
        self.first_break_sequence = first_break_sequence
        self.errors = list(errors or [])
        super().__init__(f"audit chain broken at sequence {first_break_sequence}")


class InvalidTransition(Exception):
    """A data-subject request cannot move to the requested status."""
