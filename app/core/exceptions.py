"""
Scheduling error taxonomy.

Every error carries a ``kind`` and a human readable message and is rendered by
the application as ``{"error": kind, "message": message}``.
"""
from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    kind = "SchedulingError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(SchedulingError):
    kind = "ValidationError"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(SchedulingError):
    kind = "NotFoundError"
    status_code = status.HTTP_404_NOT_FOUND


class ClosedDay(SchedulingError):
    kind = "ClosedDay"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, weekday: str):
        super().__init__(f"Doctor is not available on {weekday}")
        self.weekday = weekday


class SlotTaken(SchedulingError):
    kind = "SlotTaken"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "This time slot is already booked"):
        super().__init__(message)


class AuthorizationError(SchedulingError):
    kind = "AuthorizationError"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not enough permissions"):
        super().__init__(message)


class StateTransitionError(SchedulingError):
    kind = "StateTransitionError"
    status_code = status.HTTP_409_CONFLICT
