from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import (
    CardNotFoundError,
    ConflictError,
    LockConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from app.modules.auth.deps import TEACHER_ROLE
from app.modules.auth.models import User
from app.modules.enrollments.models import Child
from app.modules.progress.models import (
    AUDIT_ACTION_CREATED,
    AUDIT_ACTION_DELETED,
    AUDIT_ACTION_UPDATED,
    CARD_STATUS_NOT_STARTED,
    CARD_STATUSES,
    LessonProgressCard,
)
from app.modules.progress.services.audit_service import LogCardAudit
from app.modules.progress.services.card_lock_service import (
    CardLockState,
    GetCardLockState,
    HeldByOther,
    LockAvailableClause,
)
from app.modules.progress.utils.clock import AsUtc, ToNaiveUtc, UtcNow

logger = logging.getLogger("progress")


@dataclass
class BoardCard:
    Card: LessonProgressCard
    Lock: CardLockState


@dataclass
class BoardColumn:
    Status: str
    Cards: list[BoardCard] = field(default_factory=list)


def ListBoard(
    db: Session,
    school_id: int,
    teacher_id: int | None,
    student_id: int | None = None,
    now: datetime | None = None,
) -> list[BoardColumn]:
    now = ToNaiveUtc(now) if now is not None else UtcNow()
    query = db.query(LessonProgressCard).filter(LessonProgressCard.SchoolId == school_id)
    if teacher_id is not None:
        query = query.filter(LessonProgressCard.TeacherId == teacher_id)
    if student_id is not None:
        query = query.filter(LessonProgressCard.StudentId == student_id)
    cards = query.order_by(LessonProgressCard.Position.asc(), LessonProgressCard.Id.asc()).all()

    columns = {status: BoardColumn(Status=status) for status in CARD_STATUSES}
    for card in cards:
        column = columns.get(card.Status)
        if column is None:
            continue
        column.Cards.append(BoardCard(Card=card, Lock=GetCardLockState(card, now)))
    return [columns[status] for status in CARD_STATUSES]


def _ValidateStatus(value: str) -> str:
    if value not in CARD_STATUSES:
        raise ValidationError(f"Invalid status: {value}")
    return value


def _ScopedCardQuery(db: Session, card_id: int, school_id: int, teacher_id: int | None):
    query = db.query(LessonProgressCard).filter(
        LessonProgressCard.Id == card_id,
        LessonProgressCard.SchoolId == school_id,
    )
    if teacher_id is not None:
        query = query.filter(LessonProgressCard.TeacherId == teacher_id)
    return query


def _LoadScopedCard(db: Session, card_id: int, school_id: int, teacher_id: int | None) -> LessonProgressCard:
    card = _ScopedCardQuery(db, card_id, school_id, teacher_id).populate_existing().first()
    if not card:
        raise CardNotFoundError()
    return card


def _LockConflict(card: LessonProgressCard, now: datetime) -> LockConflictError:
    state = GetCardLockState(card, now)
    return LockConflictError(state.LockedBy, state.LockedAt, state.ExpiresAt)


def _NextPosition(db: Session, school_id: int, teacher_id: int, status: str) -> int:
    position = (
        db.query(func.max(LessonProgressCard.Position))
        .filter(
            LessonProgressCard.SchoolId == school_id,
            LessonProgressCard.TeacherId == teacher_id,
            LessonProgressCard.Status == status,
        )
        .scalar()
    )
    return 0 if position is None else position + 1


def _EnsureStudentInSchool(db: Session, student_id: int, school_id: int) -> None:
    student = db.query(Child.Id).filter(Child.Id == student_id, Child.SchoolId == school_id).first()
    if not student:
        raise NotFoundError("Student not found")


def _EnsureLessonNotAssigned(
    db: Session,
    lesson_id: int,
    student_id: int,
    school_id: int,
    exclude_id: int | None = None,
) -> None:
    query = db.query(LessonProgressCard.Id).filter(
        LessonProgressCard.SchoolId == school_id,
        LessonProgressCard.LessonId == lesson_id,
        LessonProgressCard.StudentId == student_id,
    )
    if exclude_id is not None:
        query = query.filter(LessonProgressCard.Id != exclude_id)
    if query.first():
        raise ConflictError("Lesson already assigned to this student")


def _CloseGap(db: Session, school_id: int, teacher_id: int, status: str, removed_position: int, now: datetime) -> int:
    """Shift cards below a removed slot up by one."""
    return (
        db.query(LessonProgressCard)
        .filter(
            LessonProgressCard.SchoolId == school_id,
            LessonProgressCard.TeacherId == teacher_id,
            LessonProgressCard.Status == status,
            LessonProgressCard.Position > removed_position,
        )
        .update(
            {"Position": LessonProgressCard.Position - 1, "UpdatedAt": now},
            synchronize_session=False,
        )
    )


def EnsureSchoolTeacher(db: Session, teacher_id: int, school_id: int) -> User:
    teacher = (
        db.query(User)
        .filter(
            User.Id == teacher_id,
            User.SchoolId == school_id,
            User.Role == TEACHER_ROLE,
            User.IsActive == 1,
        )
        .first()
    )
    if not teacher:
        raise NotFoundError("Teacher not found")
    return teacher


def CreateCard(
    db: Session,
    payload: dict,
    school_id: int,
    teacher_id: int,
    actor_id: int,
    now: datetime | None = None,
) -> LessonProgressCard:
    status = _ValidateStatus(payload.get("Status") or CARD_STATUS_NOT_STARTED)
    lesson_id = payload.get("LessonId")
    if not lesson_id:
        raise ValidationError("Lesson ID required")
    if teacher_id != actor_id:
        EnsureSchoolTeacher(db, teacher_id, school_id)

    student_id = payload.get("StudentId")
    if student_id is not None:
        _EnsureStudentInSchool(db, student_id, school_id)
        _EnsureLessonNotAssigned(db, lesson_id, student_id, school_id)

    now = ToNaiveUtc(now) if now is not None else UtcNow()
    record = LessonProgressCard(
        SchoolId=school_id,
        TeacherId=teacher_id,
        LessonId=lesson_id,
        StudentId=student_id,
        Title=payload.get("Title"),
        Notes=payload.get("Notes"),
        Status=status,
        Position=_NextPosition(db, school_id, teacher_id, status),
        CreatedBy=actor_id,
        UpdatedBy=actor_id,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(record)
    db.flush()
    LogCardAudit(
        db,
        school_id=school_id,
        card_id=record.Id,
        actor_user_id=actor_id,
        action=AUDIT_ACTION_CREATED,
        after={
            "LessonId": lesson_id,
            "StudentId": student_id,
            "TeacherId": teacher_id,
            "Status": status,
            "Position": record.Position,
        },
        now=now,
    )
    db.commit()
    db.refresh(record)
    logger.info(
        "card created school_id=%s card_id=%s teacher_id=%s status=%s",
        school_id,
        record.Id,
        teacher_id,
        status,
    )
    return record


def UpdateCard(
    db: Session,
    card_id: int,
    payload: dict,
    school_id: int,
    teacher_id: int | None,
    actor_id: int,
    now: datetime | None = None,
) -> LessonProgressCard:
    """Edit a card's assignment, text, column or position.

    ``payload`` holds only the fields the caller sent; an explicit ``None``
    StudentId unassigns the card. A status change without a position appends
    the card to the end of its new column and closes the gap it left. The
    edit is refused while another user holds an unexpired lock, and, when a
    ``Version`` is supplied, when the card changed since that version.
    """
    now = ToNaiveUtc(now) if now is not None else UtcNow()
    card = _LoadScopedCard(db, card_id, school_id, teacher_id)

    version = ToNaiveUtc(payload.get("Version"))
    if version is not None and ToNaiveUtc(card.UpdatedAt) > version:
        raise VersionConflictError(
            details={
                "CurrentVersion": AsUtc(card.UpdatedAt).isoformat(),
                "ProvidedVersion": AsUtc(version).isoformat(),
            }
        )
    if HeldByOther(GetCardLockState(card, now), actor_id):
        raise _LockConflict(card, now)

    values: dict = {}
    if "StudentId" in payload:
        student_id = payload["StudentId"]
        if student_id is not None:
            _EnsureStudentInSchool(db, student_id, school_id)
            _EnsureLessonNotAssigned(db, card.LessonId, student_id, school_id, exclude_id=card.Id)
        values["StudentId"] = student_id
    for key in ("Title", "Notes"):
        if key in payload:
            values[key] = payload[key]

    position = payload.get("Position")
    if position is not None and position < 0:
        raise ValidationError("Position must be zero or greater")

    old_status = card.Status
    old_position = card.Position
    new_status = payload.get("Status")
    status_changed = new_status is not None and _ValidateStatus(new_status) != old_status
    if status_changed:
        values["Status"] = new_status
        values["Position"] = (
            position if position is not None else _NextPosition(db, school_id, card.TeacherId, new_status)
        )
    elif position is not None:
        values["Position"] = position

    changes = {key: value for key, value in values.items() if getattr(card, key) != value}
    if not changes:
        return card
    before = {key: getattr(card, key) for key in changes}

    query = _ScopedCardQuery(db, card_id, school_id, teacher_id).filter(LockAvailableClause(actor_id, now))
    if version is not None:
        query = query.filter(LessonProgressCard.UpdatedAt <= version)
    updated = query.update(
        {**changes, "UpdatedBy": actor_id, "UpdatedAt": now},
        synchronize_session=False,
    )
    if not updated:
        db.rollback()
        card = _LoadScopedCard(db, card_id, school_id, teacher_id)
        if HeldByOther(GetCardLockState(card, now), actor_id):
            raise _LockConflict(card, now)
        raise VersionConflictError(details={"CurrentVersion": AsUtc(card.UpdatedAt).isoformat()})

    if status_changed:
        _CloseGap(db, school_id, card.TeacherId, old_status, old_position, now)
    LogCardAudit(
        db,
        school_id=school_id,
        card_id=card_id,
        actor_user_id=actor_id,
        action=AUDIT_ACTION_UPDATED,
        before=before,
        after=changes,
        now=now,
    )
    db.commit()
    logger.info(
        "card updated school_id=%s card_id=%s actor_id=%s fields=%s",
        school_id,
        card_id,
        actor_id,
        ",".join(sorted(changes)),
    )
    return _LoadScopedCard(db, card_id, school_id, teacher_id)


def DeleteCard(
    db: Session,
    card_id: int,
    school_id: int,
    teacher_id: int | None,
    actor_id: int,
    now: datetime | None = None,
) -> None:
    now = ToNaiveUtc(now) if now is not None else UtcNow()
    card = _LoadScopedCard(db, card_id, school_id, teacher_id)
    if HeldByOther(GetCardLockState(card, now), actor_id):
        raise _LockConflict(card, now)

    snapshot = {
        "LessonId": card.LessonId,
        "StudentId": card.StudentId,
        "TeacherId": card.TeacherId,
        "Status": card.Status,
        "Position": card.Position,
    }
    deleted = (
        _ScopedCardQuery(db, card_id, school_id, teacher_id)
        .filter(LockAvailableClause(actor_id, now))
        .delete(synchronize_session=False)
    )
    if not deleted:
        db.rollback()
        raise _LockConflict(_LoadScopedCard(db, card_id, school_id, teacher_id), now)

    db.expunge(card)
    _CloseGap(db, school_id, snapshot["TeacherId"], snapshot["Status"], snapshot["Position"], now)
    LogCardAudit(
        db,
        school_id=school_id,
        card_id=card_id,
        actor_user_id=actor_id,
        action=AUDIT_ACTION_DELETED,
        before=snapshot,
        now=now,
    )
    db.commit()
    logger.info("card deleted school_id=%s card_id=%s actor_id=%s", school_id, card_id, actor_id)
