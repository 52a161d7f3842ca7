"""Pessimistic edit locks on progress-board cards.

A lock is the pair (LockedBy, LockedAt) on the card row. It expires after the
configured TTL and is taken with a single conditional UPDATE, so two teachers
racing for the same card cannot both win. Lock changes never touch UpdatedAt;
the version used by moves only moves when card content changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.errors import CardNotFoundError, LockConflictError, NotLockHolderError
from app.modules.progress.models import AUDIT_ACTION_LOCKED, AUDIT_ACTION_UNLOCKED, LessonProgressCard
from app.modules.progress.services.audit_service import LogCardAudit
from app.modules.progress.utils.clock import ToNaiveUtc, UtcNow
from app.modules.progress.utils.config import Settings

logger = logging.getLogger("progress")


@dataclass
class CardLockState:
    CardId: int
    IsLocked: bool
    LockedBy: int | None = None
    LockedAt: datetime | None = None
    ExpiresAt: datetime | None = None


def _Ttl(ttl: timedelta | None) -> timedelta:
    return ttl if ttl is not None else Settings.LockTtl


def _Now(now: datetime | None) -> datetime:
    return ToNaiveUtc(now) if now is not None else UtcNow()


def _LoadCard(db: Session, card_id: int, school_id: int) -> LessonProgressCard:
    card = (
        db.query(LessonProgressCard)
        .populate_existing()
        .filter(LessonProgressCard.Id == card_id, LessonProgressCard.SchoolId == school_id)
        .first()
    )
    if not card:
        raise CardNotFoundError()
    return card


def _ExpiredOrFreeClause(cutoff: datetime):
    return or_(
        LessonProgressCard.LockedBy.is_(None),
        LessonProgressCard.LockedAt.is_(None),
        LessonProgressCard.LockedAt <= cutoff,
    )


def GetCardLockState(
    card: LessonProgressCard,
    now: datetime | None = None,
    ttl: timedelta | None = None,
) -> CardLockState:
    if card.LockedBy is None or card.LockedAt is None:
        return CardLockState(CardId=card.Id, IsLocked=False)
    locked_at = ToNaiveUtc(card.LockedAt)
    expires_at = locked_at + _Ttl(ttl)
    return CardLockState(
        CardId=card.Id,
        IsLocked=_Now(now) < expires_at,
        LockedBy=card.LockedBy,
        LockedAt=locked_at,
        ExpiresAt=expires_at,
    )


def IsCardLocked(
    db: Session,
    card_id: int,
    school_id: int,
    now: datetime | None = None,
) -> bool:
    return GetCardLockState(_LoadCard(db, card_id, school_id), now).IsLocked


def AcquireCardLock(
    db: Session,
    card_id: int,
    user_id: int,
    school_id: int,
    now: datetime | None = None,
) -> CardLockState:
    """Take or refresh the lock on a card.

    Succeeds when the card is unlocked, already held by ``user_id`` or held by
    someone whose lock has expired. Raises ``CardNotFoundError`` when the card
    is not in the school and ``LockConflictError`` when another user holds an
    unexpired lock.
    """
    now = _Now(now)
    updated = (
        db.query(LessonProgressCard)
        .filter(
            LessonProgressCard.Id == card_id,
            LessonProgressCard.SchoolId == school_id,
            LockAvailableClause(user_id, now),
        )
        .update({"LockedBy": user_id, "LockedAt": now}, synchronize_session=False)
    )
    if updated:
        LogCardAudit(
            db,
            school_id=school_id,
            card_id=card_id,
            actor_user_id=user_id,
            action=AUDIT_ACTION_LOCKED,
            now=now,
        )
    db.commit()

    card = _LoadCard(db, card_id, school_id)
    if updated:
        logger.info("card lock acquired card_id=%s user_id=%s school_id=%s", card_id, user_id, school_id)
        return GetCardLockState(card, now)

    state = GetCardLockState(card, now)
    logger.warning(
        "card lock conflict card_id=%s user_id=%s holder=%s expires_at=%s",
        card_id,
        user_id,
        state.LockedBy,
        state.ExpiresAt,
    )
    raise LockConflictError(state.LockedBy, state.LockedAt, state.ExpiresAt)


def ReleaseCardLock(db: Session, card_id: int, user_id: int, school_id: int) -> CardLockState:
    card = _LoadCard(db, card_id, school_id)
    updated = (
        db.query(LessonProgressCard)
        .filter(
            LessonProgressCard.Id == card_id,
            LessonProgressCard.SchoolId == school_id,
            LessonProgressCard.LockedBy == user_id,
        )
        .update({"LockedBy": None, "LockedAt": None}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise NotLockHolderError(details={"LockedBy": card.LockedBy})
    LogCardAudit(
        db,
        school_id=school_id,
        card_id=card_id,
        actor_user_id=user_id,
        action=AUDIT_ACTION_UNLOCKED,
    )
    db.commit()
    logger.info("card lock released card_id=%s user_id=%s school_id=%s", card_id, user_id, school_id)
    return CardLockState(CardId=card_id, IsLocked=False)


def CleanupExpiredLocks(
    db: Session,
    now: datetime | None = None,
    school_id: int | None = None,
) -> int:
    cutoff = _Now(now) - _Ttl(None)
    query = db.query(LessonProgressCard).filter(
        LessonProgressCard.LockedBy.isnot(None),
        or_(LessonProgressCard.LockedAt.is_(None), LessonProgressCard.LockedAt <= cutoff),
    )
    if school_id is not None:
        query = query.filter(LessonProgressCard.SchoolId == school_id)
    cleared = query.update({"LockedBy": None, "LockedAt": None}, synchronize_session=False)
    db.commit()
    logger.info("card lock sweep cleared=%s school_id=%s", cleared, school_id)
    return cleared


def ReleaseUserLocks(db: Session, user_id: int) -> int:
    released = (
        db.query(LessonProgressCard)
        .filter(LessonProgressCard.LockedBy == user_id)
        .update({"LockedBy": None, "LockedAt": None}, synchronize_session=False)
    )
    db.commit()
    if released:
        logger.info("card locks released on session end user_id=%s released=%s", user_id, released)
    return released


def HeldByOther(state: CardLockState, user_id: int) -> bool:
    return state.IsLocked and state.LockedBy != user_id


def LockAvailableClause(user_id: int, now: datetime):
    """SQL condition matching rows ``user_id`` may lock or edit at ``now``."""
    return or_(LessonProgressCard.LockedBy == user_id, _ExpiredOrFreeClause(now - _Ttl(None)))
