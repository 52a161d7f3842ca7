from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.dialects.mssql import DATETIME2

from app.db import Base

CARD_STATUS_NOT_STARTED = "not_started"
CARD_STATUS_IN_PROGRESS = "in_progress"
CARD_STATUS_COMPLETED = "completed"
CARD_STATUS_ON_HOLD = "on_hold"

CARD_STATUSES = (
    CARD_STATUS_NOT_STARTED,
    CARD_STATUS_IN_PROGRESS,
    CARD_STATUS_COMPLETED,
    CARD_STATUS_ON_HOLD,
)


# Naive UTC; UpdatedAt doubles as the optimistic-concurrency version.
_Timestamp = DateTime().with_variant(DATETIME2(), "mssql")


class LessonProgressCard(Base):
    __tablename__ = "lesson_progress"
    __table_args__ = (
        Index(
            "ux_school_lesson_progress_lesson_student",
            "SchoolId",
            "LessonId",
            "StudentId",
            unique=True,
            mssql_where=text("StudentId IS NOT NULL"),
            sqlite_where=text("StudentId IS NOT NULL"),
        ),
        Index("ix_school_lesson_progress_board", "SchoolId", "TeacherId", "Status", "Position"),
        Index("ix_school_lesson_progress_locked", "LockedBy", "LockedAt"),
        {"schema": "school"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    SchoolId = Column(Integer, nullable=False, index=True)
    TeacherId = Column(Integer, nullable=False)
    LessonId = Column(Integer, nullable=False)
    StudentId = Column(Integer)
    Title = Column(String(200))
    Notes = Column(Text)
    Status = Column(String(20), nullable=False, default=CARD_STATUS_NOT_STARTED)
    Position = Column(Integer, nullable=False, default=0)
    LockedBy = Column(Integer)
    LockedAt = Column(_Timestamp)
    CreatedBy = Column(Integer, nullable=False)
    UpdatedBy = Column(Integer)
    CreatedAt = Column(_Timestamp, nullable=False)
    UpdatedAt = Column(_Timestamp, nullable=False)


AUDIT_ACTION_CREATED = "created"
AUDIT_ACTION_UPDATED = "updated"
AUDIT_ACTION_MOVED = "moved"
AUDIT_ACTION_REORDERED = "reordered"
AUDIT_ACTION_DELETED = "deleted"
AUDIT_ACTION_LOCKED = "locked"
AUDIT_ACTION_UNLOCKED = "unlocked"


class LessonProgressAudit(Base):
    """Append-only trail of card changes. Rows outlive the card they describe."""

    __tablename__ = "lesson_progress_audit"
    __table_args__ = (
        Index("ix_school_lesson_progress_audit_card", "SchoolId", "CardId", "CreatedAt"),
        {"schema": "school"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    SchoolId = Column(Integer, nullable=False)
    CardId = Column(Integer, nullable=False)
    Action = Column(String(20), nullable=False)
    ActorUserId = Column(Integer, nullable=False)
    Summary = Column(String(300))
    BeforeJson = Column(Text)
    AfterJson = Column(Text)
    CreatedAt = Column(_Timestamp, nullable=False)
