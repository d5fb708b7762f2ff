# errors.py
# Error kinds surfaced to the operator.
# - ValidationError: bad or duplicate applicant / IPO input
# - NotFoundError: company (or active IPO) missing
# - ConstraintViolation: storage uniqueness / foreign-key failure
# - EmptyInputError: nothing to allot


class IPODeskError(Exception):
    """Base class for every error the desk raises on purpose."""


class ValidationError(IPODeskError):
    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        # list of {'field': ..., 'message': ...}
        self.details = list(details or [])


class NotFoundError(IPODeskError):
    pass


class ConstraintViolation(IPODeskError):
    pass


class EmptyInputError(IPODeskError):
    pass
