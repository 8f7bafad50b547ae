class SchedulingError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(SchedulingError):
    status_code = 400


class InvalidTransitionError(ValidationError):
    pass


class ForbiddenError(SchedulingError):
    status_code = 403


class NotFoundError(SchedulingError):
    status_code = 404


class ConflictError(SchedulingError):
    """
    Slot lost to another claim. Callers should re-query availability; never retried server-side.
    """

    status_code = 409


class TransientDependencyError(SchedulingError):
    status_code = 503


class PermanentNotificationError(SchedulingError):
    status_code = 502


class FatalInvariantViolation(SchedulingError):
    status_code = 500
