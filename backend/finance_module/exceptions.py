class FinanceError(Exception):
    status_code = 500


class FinanceValidationError(FinanceError):
    status_code = 400


class CapabilityError(FinanceError):
    status_code = 403


class NotFoundError(FinanceError):
    status_code = 404


class ConflictError(FinanceError):
    status_code = 409
