"""
Error taxonomy surfaced by the registration core.
"""


class RegistrationError(Exception):
    """Base class for registration core errors."""
    pass


class NotFoundError(RegistrationError):
    """Unknown registration or renewal payment id. Not retried."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ConflictError(RegistrationError):
    """The requested action contradicts the current state; the caller must pick another action."""
    pass


class StageValidationError(RegistrationError):
    """A submission is missing required fields or carries invalid values."""

    def __init__(self, message: str, missing_fields=None):
        self.missing_fields = list(missing_fields or [])
        super().__init__(message)


class TransientStoreError(RegistrationError):
    """I/O failure talking to the record store. The whole mutation may be retried."""
    pass
