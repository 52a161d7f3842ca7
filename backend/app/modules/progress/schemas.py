from datetime import datetime

from pydantic import BaseModel, Field


class CardLockOut(BaseModel):
    CardId: int
    IsLocked: bool
    LockedBy: int | None = None
    LockedAt: datetime | None = None
    ExpiresAt: datetime | None = None


class CardOut(BaseModel):
    Id: int
    TeacherId: int
    LessonId: int
    StudentId: int | None = None
    Title: str | None = None
    Notes: str | None = None
    Status: str
    Position: int
    Version: datetime
    Lock: CardLockOut
    CreatedBy: int
    UpdatedBy: int | None = None
    CreatedAt: datetime


class BoardColumnOut(BaseModel):
    Status: str
    Cards: list[CardOut]


class BoardResponse(BaseModel):
    Columns: list[BoardColumnOut]


class CardCreate(BaseModel):
    LessonId: int
    StudentId: int | None = None
    Title: str | None = Field(default=None, max_length=200)
    Notes: str | None = None
    Status: str | None = None
    TeacherId: int | None = None


class CardUpdate(BaseModel):
    StudentId: int | None = None
    Title: str | None = Field(default=None, max_length=200)
    Notes: str | None = None
    Status: str | None = None
    Position: int | None = Field(default=None, ge=0)
    Version: datetime | None = None


class CardMoveRequest(BaseModel):
    Status: str
    Position: int
    Version: datetime


class BatchMoveItem(BaseModel):
    CardId: int
    Status: str
    Position: int
    Version: datetime


class BatchMoveRequest(BaseModel):
    Moves: list[BatchMoveItem]


class MovedCardOut(BaseModel):
    CardId: int
    Status: str
    Position: int
    Version: datetime


class FailedMoveOut(BaseModel):
    CardId: int
    Code: str
    Message: str
    Details: dict | None = None


class BatchMoveResponse(BaseModel):
    Updated: list[MovedCardOut]
    Failed: list[FailedMoveOut]


class ReorderRequest(BaseModel):
    Status: str
    CardIds: list[int]


class ReorderResponse(BaseModel):
    UpdatedCount: int


class LockCleanupResponse(BaseModel):
    Cleared: int


class CardAuditOut(BaseModel):
    Id: int
    CardId: int
    Action: str
    ActorUserId: int
    Summary: str | None = None
    Before: dict | None = None
    After: dict | None = None
    CreatedAt: datetime


class CardAuditResponse(BaseModel):
    CardId: int
    Entries: list[CardAuditOut]
