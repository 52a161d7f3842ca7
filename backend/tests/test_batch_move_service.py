from datetime import datetime, timedelta
import itertools

import pytest

from app.core.errors import CardNotFoundError, LockConflictError, ValidationError, VersionConflictError
from app.modules.progress.models import LessonProgressCard
from app.modules.progress.services.batch_move_service import (
    CardMove,
    ExecuteBatchMove,
    MoveCard,
    ReorderCardsInColumn,
    ValidateBatchMoves,
)
from app.modules.progress.services.board_service import CreateCard, ListBoard
from app.modules.progress.services.card_lock_service import AcquireCardLock

SCHOOL_ID = 1
TEACHER_ID = 1
OTHER_TEACHER_ID = 2
OTHER_SCHOOL_ID = 2
T0 = datetime(2026, 3, 2, 8, 0, 0)
T = datetime(2026, 3, 2, 9, 0, 0)
_lesson_ids = itertools.count(100)


def _CreateCards(db, count: int, status: str = "not_started", teacher_id: int = TEACHER_ID):
    return [
        CreateCard(
            db,
            {"LessonId": next(_lesson_ids), "Status": status},
            SCHOOL_ID,
            teacher_id,
            teacher_id,
            now=T0,
        )
        for _ in range(count)
    ]


def test_validate_rejects_malformed_batches():
    valid = CardMove(CardId=1, Status="completed", Position=0, Version=T0)
    with pytest.raises(ValidationError):
        ValidateBatchMoves([])
    with pytest.raises(ValidationError):
        ValidateBatchMoves([valid, CardMove(CardId=1, Status="in_progress", Position=1, Version=T0)])
    with pytest.raises(ValidationError):
        ValidateBatchMoves([CardMove(CardId=2, Status="completed", Position=-1, Version=T0)])
    with pytest.raises(ValidationError):
        ValidateBatchMoves([CardMove(CardId=3, Status="archived", Position=0, Version=T0)])
    ValidateBatchMoves([valid])


def test_move_updates_status_position_and_version(db):
    card = _CreateCards(db, 1)[0]
    moved = MoveCard(
        db,
        CardMove(CardId=card.Id, Status="in_progress", Position=3, Version=card.UpdatedAt),
        SCHOOL_ID,
        TEACHER_ID,
        TEACHER_ID,
        now=T,
    )
    assert moved.Status == "in_progress"
    assert moved.Position == 3
    assert moved.UpdatedAt == T
    assert moved.UpdatedBy == TEACHER_ID


def test_move_with_stale_version_conflicts(db):
    card = _CreateCards(db, 1)[0]
    stale_version = card.UpdatedAt
    MoveCard(
        db,
        CardMove(CardId=card.Id, Status="in_progress", Position=0, Version=stale_version),
        SCHOOL_ID,
        TEACHER_ID,
        TEACHER_ID,
        now=T,
    )
    with pytest.raises(VersionConflictError):
        MoveCard(
            db,
            CardMove(CardId=card.Id, Status="completed", Position=0, Version=stale_version),
            SCHOOL_ID,
            TEACHER_ID,
            TEACHER_ID,
            now=T + timedelta(minutes=1),
        )


def test_move_blocked_by_someone_elses_lock(db):
    card = _CreateCards(db, 1)[0]
    AcquireCardLock(db, card.Id, OTHER_TEACHER_ID, SCHOOL_ID, now=T)
    with pytest.raises(LockConflictError) as exc_info:
        MoveCard(
            db,
            CardMove(CardId=card.Id, Status="completed", Position=0, Version=T0),
            SCHOOL_ID,
            None,
            TEACHER_ID,
            now=T + timedelta(minutes=1),
        )
    assert exc_info.value.HolderUserId == OTHER_TEACHER_ID

    moved = MoveCard(
        db,
        CardMove(CardId=card.Id, Status="completed", Position=0, Version=T0),
        SCHOOL_ID,
        None,
        TEACHER_ID,
        now=T + timedelta(minutes=6),
    )
    assert moved.Status == "completed"


def test_move_of_another_teachers_card_is_not_found(db):
    card = _CreateCards(db, 1, teacher_id=OTHER_TEACHER_ID)[0]
    with pytest.raises(CardNotFoundError):
        MoveCard(
            db,
            CardMove(CardId=card.Id, Status="completed", Position=0, Version=T0),
            SCHOOL_ID,
            TEACHER_ID,
            TEACHER_ID,
            now=T,
        )


def test_batch_reports_failures_per_card(db):
    first, stale, locked = _CreateCards(db, 3)
    AcquireCardLock(db, locked.Id, OTHER_TEACHER_ID, SCHOOL_ID, now=T)

    result = ExecuteBatchMove(
        db,
        [
            CardMove(CardId=first.Id, Status="completed", Position=0, Version=T0),
            CardMove(CardId=stale.Id, Status="completed", Position=1, Version=T0 - timedelta(seconds=1)),
            CardMove(CardId=locked.Id, Status="completed", Position=2, Version=T0),
            CardMove(CardId=9999, Status="completed", Position=3, Version=T0),
        ],
        SCHOOL_ID,
        TEACHER_ID,
        TEACHER_ID,
        now=T + timedelta(minutes=1),
    )

    assert [entry.CardId for entry in result.Updated] == [first.Id]
    assert result.Updated[0].Version == T + timedelta(minutes=1)
    assert [(entry.CardId, entry.Code) for entry in result.Failed] == [
        (stale.Id, "VERSION_CONFLICT"),
        (locked.Id, "CARD_LOCKED"),
        (9999, "CARD_NOT_FOUND"),
    ]

    statuses = {
        card.Id: card.Status
        for card in db.query(LessonProgressCard).filter(LessonProgressCard.SchoolId == SCHOOL_ID).all()
    }
    assert statuses == {first.Id: "completed", stale.Id: "not_started", locked.Id: "not_started"}


def test_batch_with_duplicates_is_rejected_before_any_move(db):
    card = _CreateCards(db, 1)[0]
    with pytest.raises(ValidationError):
        ExecuteBatchMove(
            db,
            [
                CardMove(CardId=card.Id, Status="completed", Position=0, Version=T0),
                CardMove(CardId=card.Id, Status="on_hold", Position=1, Version=T0),
            ],
            SCHOOL_ID,
            TEACHER_ID,
            TEACHER_ID,
        )
    db.refresh(card)
    assert card.Status == "not_started"


def test_reorder_counts_only_cards_in_scope(db):
    first, second, third = _CreateCards(db, 3)
    elsewhere = _CreateCards(db, 1, status="completed")[0]
    foreign = _CreateCards(db, 1, teacher_id=OTHER_TEACHER_ID)[0]

    updated = ReorderCardsInColumn(
        db,
        [third.Id, first.Id, elsewhere.Id, second.Id, foreign.Id],
        "not_started",
        SCHOOL_ID,
        TEACHER_ID,
        TEACHER_ID,
        now=T,
    )
    assert updated == 3

    columns = {column.Status: column for column in ListBoard(db, SCHOOL_ID, TEACHER_ID, now=T)}
    assert [entry.Card.Id for entry in columns["not_started"].Cards] == [third.Id, first.Id, second.Id]
    assert [entry.Card.Position for entry in columns["not_started"].Cards] == [0, 1, 3]


def test_create_card_appends_to_column(db):
    cards = _CreateCards(db, 3)
    assert [card.Position for card in cards] == [0, 1, 2]


def _CreateOtherSchoolCard(db, status: str = "not_started"):
    return CreateCard(
        db,
        {"LessonId": next(_lesson_ids), "Status": status},
        OTHER_SCHOOL_ID,
        TEACHER_ID,
        TEACHER_ID,
        now=T0,
    )


def test_move_of_another_schools_card_is_not_found(db):
    foreign = _CreateOtherSchoolCard(db)
    with pytest.raises(CardNotFoundError):
        MoveCard(
            db,
            CardMove(CardId=foreign.Id, Status="completed", Position=0, Version=T0),
            SCHOOL_ID,
            None,
            TEACHER_ID,
            now=T,
        )
    db.refresh(foreign)
    assert foreign.Status == "not_started"
    assert foreign.UpdatedAt == T0


def test_batch_leaves_another_schools_card_untouched(db):
    own = _CreateCards(db, 1)[0]
    foreign = _CreateOtherSchoolCard(db)

    result = ExecuteBatchMove(
        db,
        [
            CardMove(CardId=own.Id, Status="completed", Position=0, Version=T0),
            CardMove(CardId=foreign.Id, Status="completed", Position=1, Version=T0),
        ],
        SCHOOL_ID,
        None,
        TEACHER_ID,
        now=T,
    )

    assert [entry.CardId for entry in result.Updated] == [own.Id]
    assert [(entry.CardId, entry.Code) for entry in result.Failed] == [(foreign.Id, "CARD_NOT_FOUND")]
    db.refresh(foreign)
    assert foreign.Status == "not_started"
    assert foreign.Position == 0
    assert foreign.UpdatedAt == T0


def test_reorder_ignores_another_schools_card(db):
    first, second = _CreateCards(db, 2)
    foreign = _CreateOtherSchoolCard(db)

    updated = ReorderCardsInColumn(
        db,
        [foreign.Id, second.Id, first.Id],
        "not_started",
        SCHOOL_ID,
        None,
        TEACHER_ID,
        now=T,
    )
    assert updated == 2

    db.refresh(foreign)
    assert foreign.Position == 0
    assert foreign.UpdatedAt == T0
