from __future__ import annotations

from datetime import datetime
import json

from sqlalchemy.orm import Session

from app.core.errors import CardNotFoundError
from app.modules.progress.models import LessonProgressAudit, LessonProgressCard
from app.modules.progress.utils.clock import ToNaiveUtc, UtcNow


def _SerializeJson(value: dict | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), default=str)


def LogCardAudit(
    db: Session,
    *,
    school_id: int,
    card_id: int,
    actor_user_id: int,
    action: str,
    summary: str | None = None,
    before: dict | None = None,
    after: dict | None = None,
    now: datetime | None = None,
) -> LessonProgressAudit:
    """Stage an audit row in the caller's transaction.

    The row is committed together with the card change it describes, so a
    rolled-back change leaves no trail entry behind.
    """
    record = LessonProgressAudit(
        SchoolId=school_id,
        CardId=card_id,
        ActorUserId=actor_user_id,
        Action=action,
        Summary=summary,
        BeforeJson=_SerializeJson(before),
        AfterJson=_SerializeJson(after),
        CreatedAt=ToNaiveUtc(now) if now is not None else UtcNow(),
    )
    db.add(record)
    return record


def ListCardAudits(db: Session, *, card_id: int, school_id: int) -> list[LessonProgressAudit]:
    return (
        db.query(LessonProgressAudit)
        .filter(LessonProgressAudit.CardId == card_id, LessonProgressAudit.SchoolId == school_id)
        .order_by(LessonProgressAudit.CreatedAt.asc(), LessonProgressAudit.Id.asc())
        .all()
    )


def GetCardAuditTrail(
    db: Session,
    card_id: int,
    school_id: int,
    teacher_id: int | None,
) -> list[LessonProgressAudit]:
    """Trail of a card, oldest first.

    Teachers read trails of their own live cards only. Without a teacher scope
    the trail of a deleted card stays readable.
    """
    card = (
        db.query(LessonProgressCard)
        .filter(LessonProgressCard.Id == card_id, LessonProgressCard.SchoolId == school_id)
        .first()
    )
    if card is None and teacher_id is not None:
        raise CardNotFoundError()
    if card is not None and teacher_id is not None and card.TeacherId != teacher_id:
        raise CardNotFoundError()

    entries = ListCardAudits(db, card_id=card_id, school_id=school_id)
    if card is None and not entries:
        raise CardNotFoundError()
    return entries
