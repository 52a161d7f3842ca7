from datetime import datetime, timezone

from fastapi import HTTPException, status


def _IsoUtc(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class SchoolError(ValueError):
    Code = "ERROR"
    StatusCode = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.Message = message
        self.Details = details

    def ToDetail(self) -> dict:
        detail = {"Code": self.Code, "Message": self.Message}
        if self.Details:
            detail["Details"] = self.Details
        return detail


class ValidationError(SchoolError):
    Code = "VALIDATION_ERROR"


class FeeOutOfRangeError(ValidationError):
    Code = "FEE_OUT_OF_RANGE"


class NotFoundError(SchoolError):
    Code = "NOT_FOUND"
    StatusCode = status.HTTP_404_NOT_FOUND


class CardNotFoundError(NotFoundError):
    Code = "CARD_NOT_FOUND"

    def __init__(self, message: str = "Card not found", details: dict | None = None):
        super().__init__(message, details)


class AuthorizationError(SchoolError):
    Code = "FORBIDDEN"
    StatusCode = status.HTTP_403_FORBIDDEN


class ConflictError(SchoolError):
    Code = "CONFLICT"
    StatusCode = status.HTTP_409_CONFLICT


class LockConflictError(ConflictError):
    Code = "CARD_LOCKED"

    def __init__(self, holder_user_id: int | None, locked_at: datetime | None, expires_at: datetime | None):
        super().__init__(
            "Card is locked by another user",
            {
                "LockedBy": holder_user_id,
                "LockedAt": _IsoUtc(locked_at),
                "ExpiresAt": _IsoUtc(expires_at),
            },
        )
        self.HolderUserId = holder_user_id
        self.LockedAt = locked_at
        self.ExpiresAt = expires_at


class VersionConflictError(ConflictError):
    Code = "VERSION_CONFLICT"

    def __init__(self, message: str = "Card has been modified by another user", details: dict | None = None):
        super().__init__(message, details)


class NotLockHolderError(SchoolError):
    Code = "NOT_LOCK_HOLDER"
    StatusCode = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Card is not locked by this user", details: dict | None = None):
        super().__init__(message, details)


def ToHttpException(exc: SchoolError) -> HTTPException:
    return HTTPException(status_code=exc.StatusCode, detail=exc.ToDetail())
