"""Domain errors raised by the booking core and translated at the API edge."""

from fastapi import HTTPException, status


class BookingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.message)


class ValidationFailed(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class SlotConflict(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class StorageFailure(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class DuplicateSlotError(ValueError):
    """Two slots on the same weekday share a start and end time."""
