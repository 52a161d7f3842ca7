from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import CardNotFoundError, LockConflictError, NotLockHolderError
from app.modules.progress.services.board_service import CreateCard
from app.modules.progress.services.card_lock_service import (
    AcquireCardLock,
    CleanupExpiredLocks,
    IsCardLocked,
    ReleaseCardLock,
    ReleaseUserLocks,
)

SCHOOL_ID = 1
TEACHER_ID = 1
OTHER_TEACHER_ID = 2
T = datetime(2026, 3, 2, 9, 0, 0)


def _CreateCard(db, lesson_id=100, school_id=SCHOOL_ID):
    return CreateCard(db, {"LessonId": lesson_id}, school_id, TEACHER_ID, TEACHER_ID, now=T - timedelta(hours=1))


def test_lock_conflict_then_takeover_after_ttl(db):
    card = _CreateCard(db)
    AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID, now=T)

    with pytest.raises(LockConflictError) as exc_info:
        AcquireCardLock(db, card.Id, OTHER_TEACHER_ID, SCHOOL_ID, now=T + timedelta(minutes=1))
    assert exc_info.value.HolderUserId == TEACHER_ID
    assert exc_info.value.LockedAt == T
    assert exc_info.value.ExpiresAt == T + timedelta(minutes=5)
    assert exc_info.value.ToDetail()["Code"] == "CARD_LOCKED"

    state = AcquireCardLock(db, card.Id, OTHER_TEACHER_ID, SCHOOL_ID, now=T + timedelta(minutes=6))
    assert state.IsLocked
    assert state.LockedBy == OTHER_TEACHER_ID
    assert state.ExpiresAt == T + timedelta(minutes=11)


def test_holder_reacquire_refreshes_lock(db):
    card = _CreateCard(db)
    AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID, now=T)
    state = AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID, now=T + timedelta(minutes=4))
    assert state.LockedBy == TEACHER_ID
    assert state.LockedAt == T + timedelta(minutes=4)
    assert state.ExpiresAt == T + timedelta(minutes=9)


def test_lock_accepts_timezone_aware_now(db):
    card = _CreateCard(db)
    AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID, now=T.replace(tzinfo=timezone.utc))
    assert IsCardLocked(db, card.Id, SCHOOL_ID, now=T + timedelta(minutes=4, seconds=59))
    assert not IsCardLocked(db, card.Id, SCHOOL_ID, now=T + timedelta(minutes=5))


def test_locking_does_not_change_version(db):
    card = _CreateCard(db)
    version = card.UpdatedAt
    AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID, now=T)
    ReleaseCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID)
    db.refresh(card)
    assert card.UpdatedAt == version


def test_lock_on_card_from_other_school_is_not_found(db):
    card = _CreateCard(db)
    with pytest.raises(CardNotFoundError):
        AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID + 1, now=T)
    with pytest.raises(CardNotFoundError):
        AcquireCardLock(db, 9999, TEACHER_ID, SCHOOL_ID, now=T)


def test_release_requires_holder(db):
    card = _CreateCard(db)
    with pytest.raises(NotLockHolderError):
        ReleaseCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID)

    AcquireCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID, now=T)
    with pytest.raises(NotLockHolderError):
        ReleaseCardLock(db, card.Id, OTHER_TEACHER_ID, SCHOOL_ID)

    state = ReleaseCardLock(db, card.Id, TEACHER_ID, SCHOOL_ID)
    assert not state.IsLocked
    db.refresh(card)
    assert card.LockedBy is None
    assert card.LockedAt is None


def test_sweep_clears_only_expired_locks(db):
    stale = _CreateCard(db, lesson_id=100)
    fresh = _CreateCard(db, lesson_id=101)
    AcquireCardLock(db, stale.Id, TEACHER_ID, SCHOOL_ID, now=T)
    AcquireCardLock(db, fresh.Id, OTHER_TEACHER_ID, SCHOOL_ID, now=T + timedelta(minutes=8))

    assert CleanupExpiredLocks(db, now=T + timedelta(minutes=10)) == 1
    assert CleanupExpiredLocks(db, now=T + timedelta(minutes=10)) == 0

    db.refresh(stale)
    db.refresh(fresh)
    assert stale.LockedBy is None
    assert fresh.LockedBy == OTHER_TEACHER_ID


def test_sweep_scoped_to_school(db):
    mine = _CreateCard(db, lesson_id=100)
    theirs = _CreateCard(db, lesson_id=200, school_id=SCHOOL_ID + 1)
    AcquireCardLock(db, mine.Id, TEACHER_ID, SCHOOL_ID, now=T)
    AcquireCardLock(db, theirs.Id, TEACHER_ID, SCHOOL_ID + 1, now=T)

    assert CleanupExpiredLocks(db, now=T + timedelta(hours=1), school_id=SCHOOL_ID) == 1
    db.refresh(theirs)
    assert theirs.LockedBy == TEACHER_ID


def test_release_user_locks_on_session_end(db):
    first = _CreateCard(db, lesson_id=100)
    second = _CreateCard(db, lesson_id=101)
    other = _CreateCard(db, lesson_id=102)
    AcquireCardLock(db, first.Id, TEACHER_ID, SCHOOL_ID, now=T)
    AcquireCardLock(db, second.Id, TEACHER_ID, SCHOOL_ID, now=T)
    AcquireCardLock(db, other.Id, OTHER_TEACHER_ID, SCHOOL_ID, now=T)

    assert ReleaseUserLocks(db, TEACHER_ID) == 2
    assert ReleaseUserLocks(db, TEACHER_ID) == 0
    assert IsCardLocked(db, other.Id, SCHOOL_ID, now=T + timedelta(minutes=1))
