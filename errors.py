class StoreUnavailable(Exception):
    """The record store could not be reached or failed to execute a request."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"Record store failed during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class IntegrityViolation(Exception):
    """A write would break a reference between records."""


class ValidationFailure(Exception):
    """A write payload is inconsistent; raised before the store is touched."""
