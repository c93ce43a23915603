class ValidationError(ValueError):
    """Malformed amount, category or status."""


class NotFoundError(ValueError):
    pass


class InvalidStateError(ValueError):
    """A reimbursement transition that its current status does not allow."""


class ConflictError(ValueError):
    pass


class DuplicateCategoryError(ConflictError):
    pass


class StaleWriteError(RuntimeError):
    """The budget changed since the caller read it; safe to retry."""


class DependencyError(RuntimeError):
    """The record store or blob backend failed; safe to retry."""
