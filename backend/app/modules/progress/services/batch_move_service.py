from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    CardNotFoundError,
    LockConflictError,
    SchoolError,
    ValidationError,
    VersionConflictError,
)
from app.modules.progress.models import (
    AUDIT_ACTION_MOVED,
    AUDIT_ACTION_REORDERED,
    CARD_STATUSES,
    LessonProgressCard,
)
from app.modules.progress.services.audit_service import LogCardAudit
from app.modules.progress.services.card_lock_service import GetCardLockState, HeldByOther, LockAvailableClause
from app.modules.progress.utils.clock import AsUtc, ToNaiveUtc, UtcNow
from app.modules.progress.utils.config import Settings

logger = logging.getLogger("progress")

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"


@dataclass
class CardMove:
    CardId: int
    Status: str
    Position: int
    Version: datetime


@dataclass
class MovedCard:
    CardId: int
    Status: str
    Position: int
    Version: datetime


@dataclass
class FailedMove:
    CardId: int
    Code: str
    Message: str
    Details: dict | None = None


@dataclass
class BatchMoveResult:
    Updated: list[MovedCard] = field(default_factory=list)
    Failed: list[FailedMove] = field(default_factory=list)


def _ValidateStatus(value: str) -> str:
    if value not in CARD_STATUSES:
        raise ValidationError(f"Invalid status: {value}", {"Allowed": list(CARD_STATUSES)})
    return value


def ValidateBatchMoves(moves: list[CardMove]) -> None:
    """Reject a malformed batch before any card is touched."""
    if not moves:
        raise ValidationError("At least one move is required")
    if len(moves) > Settings.MaxBatchMoves:
        raise ValidationError(
            f"A batch can move at most {Settings.MaxBatchMoves} cards",
            {"Max": Settings.MaxBatchMoves},
        )

    seen: set[int] = set()
    duplicates: list[int] = []
    for move in moves:
        if move.CardId in seen:
            duplicates.append(move.CardId)
        seen.add(move.CardId)
        if move.Position is None or move.Position < 0:
            raise ValidationError("Position must be zero or greater", {"CardId": move.CardId})
        if move.Version is None:
            raise ValidationError("Version is required", {"CardId": move.CardId})
        _ValidateStatus(move.Status)
    if duplicates:
        raise ValidationError("Duplicate card ids in batch", {"CardIds": sorted(set(duplicates))})


def _ScopedCardQuery(db: Session, card_id: int, school_id: int, teacher_id: int | None):
    query = db.query(LessonProgressCard).filter(
        LessonProgressCard.Id == card_id,
        LessonProgressCard.SchoolId == school_id,
    )
    if teacher_id is not None:
        query = query.filter(LessonProgressCard.TeacherId == teacher_id)
    return query


def _VersionConflict(card: LessonProgressCard, version: datetime) -> VersionConflictError:
    return VersionConflictError(
        details={
            "CurrentVersion": AsUtc(card.UpdatedAt).isoformat(),
            "ProvidedVersion": AsUtc(version).isoformat(),
        }
    )


def _LockConflict(card: LessonProgressCard, now: datetime) -> LockConflictError:
    state = GetCardLockState(card, now)
    return LockConflictError(state.LockedBy, state.LockedAt, state.ExpiresAt)


def MoveCard(
    db: Session,
    move: CardMove,
    school_id: int,
    teacher_id: int | None,
    actor_id: int,
    now: datetime | None = None,
) -> LessonProgressCard:
    """Move one card to a status column and position.

    The caller's ``Version`` is the card's ``UpdatedAt`` as last read. The
    write is guarded on that version so a concurrent edit between the checks
    and the update still surfaces as a conflict.
    """
    now = ToNaiveUtc(now) if now is not None else UtcNow()
    version = ToNaiveUtc(move.Version)
    _ValidateStatus(move.Status)

    card = _ScopedCardQuery(db, move.CardId, school_id, teacher_id).populate_existing().first()
    if not card:
        raise CardNotFoundError()
    if ToNaiveUtc(card.UpdatedAt) > version:
        raise _VersionConflict(card, version)
    before = {"Status": card.Status, "Position": card.Position}
    if HeldByOther(GetCardLockState(card, now), actor_id):
        raise _LockConflict(card, now)

    updated = (
        _ScopedCardQuery(db, move.CardId, school_id, teacher_id)
        .filter(
            LessonProgressCard.UpdatedAt <= version,
            LockAvailableClause(actor_id, now),
        )
        .update(
            {
                "Status": move.Status,
                "Position": move.Position,
                "UpdatedBy": actor_id,
                "UpdatedAt": now,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        card = _ScopedCardQuery(db, move.CardId, school_id, teacher_id).populate_existing().first()
        if not card:
            raise CardNotFoundError()
        if HeldByOther(GetCardLockState(card, now), actor_id):
            raise _LockConflict(card, now)
        raise _VersionConflict(card, version)

    LogCardAudit(
        db,
        school_id=school_id,
        card_id=move.CardId,
        actor_user_id=actor_id,
        action=AUDIT_ACTION_MOVED,
        before=before,
        after={"Status": move.Status, "Position": move.Position},
        now=now,
    )
    db.commit()
    return _ScopedCardQuery(db, move.CardId, school_id, teacher_id).populate_existing().first()


def ExecuteBatchMove(
    db: Session,
    moves: list[CardMove],
    school_id: int,
    teacher_id: int | None,
    actor_id: int,
    now: datetime | None = None,
) -> BatchMoveResult:
    """Apply moves in order, each in its own transaction.

    Only a malformed batch raises. Per-card failures, including unexpected
    database errors, are collected in ``Failed`` and never stop the rest.
    """
    ValidateBatchMoves(moves)
    result = BatchMoveResult()
    for move in moves:
        try:
            card = MoveCard(db, move, school_id, teacher_id, actor_id, now)
            result.Updated.append(
                MovedCard(
                    CardId=card.Id,
                    Status=card.Status,
                    Position=card.Position,
                    Version=ToNaiveUtc(card.UpdatedAt),
                )
            )
        except SchoolError as exc:
            db.rollback()
            result.Failed.append(
                FailedMove(CardId=move.CardId, Code=exc.Code, Message=exc.Message, Details=exc.Details)
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("batch move database error card_id=%s", move.CardId)
            result.Failed.append(
                FailedMove(CardId=move.CardId, Code=INTERNAL_ERROR_CODE, Message="Failed to move card")
            )

    log = logger.warning if result.Failed else logger.info
    log(
        "batch move school_id=%s actor_id=%s updated=%s failed=%s",
        school_id,
        actor_id,
        len(result.Updated),
        len(result.Failed),
    )
    return result


def ReorderCardsInColumn(
    db: Session,
    card_ids: list[int],
    status: str,
    school_id: int,
    teacher_id: int | None,
    actor_id: int,
    now: datetime | None = None,
) -> int:
    _ValidateStatus(status)
    if not card_ids:
        raise ValidationError("At least one card id is required")
    if len(set(card_ids)) != len(card_ids):
        raise ValidationError("Duplicate card ids in reorder")

    now = ToNaiveUtc(now) if now is not None else UtcNow()
    updated_count = 0
    for position, card_id in enumerate(card_ids):
        updated = (
            _ScopedCardQuery(db, card_id, school_id, teacher_id)
            .filter(LessonProgressCard.Status == status)
            .update(
                {"Position": position, "UpdatedBy": actor_id, "UpdatedAt": now},
                synchronize_session=False,
            )
        )
        if updated:
            LogCardAudit(
                db,
                school_id=school_id,
                card_id=card_id,
                actor_user_id=actor_id,
                action=AUDIT_ACTION_REORDERED,
                after={"Status": status, "Position": position},
                now=now,
            )
        updated_count += updated
    db.commit()
    logger.info(
        "column reordered school_id=%s status=%s requested=%s updated=%s",
        school_id,
        status,
        len(card_ids),
        updated_count,
    )
    return updated_count
