from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from app.modules.auth import router as auth_router
from app.modules.auth.deps import ADMIN_ROLE, TEACHER_ROLE, UserContext
from app.modules.auth.models import User
from app.modules.enrollments import router as enrollments_router
from app.modules.enrollments.schemas import ChildCreate, EnrollmentCreate, EnrollmentUpdate
from app.modules.progress import router as progress_router
from app.modules.progress.schemas import BatchMoveItem, BatchMoveRequest, CardCreate, CardUpdate

ADMIN = UserContext(Id=1, Username="director", Role=ADMIN_ROLE, SchoolId=1)
OTHER_ADMIN = UserContext(Id=5, Username="elsewhere", Role=ADMIN_ROLE, SchoolId=2)
TEACHER = UserContext(Id=2, Username="maria", Role=TEACHER_ROLE, SchoolId=1)
OTHER_TEACHER = UserContext(Id=3, Username="elena", Role=TEACHER_ROLE, SchoolId=1)


def _ChildPayload(fee: str) -> ChildCreate:
    return ChildCreate(
        FirstName="Ana",
        LastName="Popescu",
        DateOfBirth=date(2021, 5, 4),
        MonthlyFee=Decimal(fee),
    )


def test_create_child_converts_major_units(db):
    child = enrollments_router.CreateChildItem(_ChildPayload("1500"), db=db, user=ADMIN)
    assert child.MonthlyFee == 150000
    assert child.MonthlyFeeDisplay == "1,500 RON"


def test_create_child_rejects_fee_above_ceiling(db):
    with pytest.raises(HTTPException) as exc_info:
        enrollments_router.CreateChildItem(_ChildPayload("15000"), db=db, user=ADMIN)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["Code"] == "FEE_OUT_OF_RANGE"
    assert "exceed 10,000" in exc_info.value.detail["Message"]


def test_create_child_rejects_negative_fee(db):
    with pytest.raises(HTTPException) as exc_info:
        enrollments_router.CreateChildItem(_ChildPayload("-100"), db=db, user=ADMIN)
    assert exc_info.value.status_code == 400
    assert "negative" in exc_info.value.detail["Message"]


def test_child_from_other_school_answers_not_found(db):
    child = enrollments_router.CreateChildItem(_ChildPayload("1500"), db=db, user=ADMIN)
    with pytest.raises(HTTPException) as exc_info:
        enrollments_router.GetChildItem(child.Id, db=db, user=OTHER_ADMIN)
    assert exc_info.value.status_code == 404


def test_enrollment_override_set_and_cleared(db):
    child = enrollments_router.CreateChildItem(_ChildPayload("1500"), db=db, user=ADMIN)
    enrollment = enrollments_router.CreateEnrollmentItem(
        EnrollmentCreate(ChildId=child.Id, MonthlyFeeOverride=Decimal("1200")),
        db=db,
        user=ADMIN,
    )
    assert enrollment.EffectiveFee == 120000
    assert enrollment.EffectiveFeeSource == "enrollment_override"
    assert enrollment.EffectiveFeeDisplay == "1,200 RON"

    cleared = enrollments_router.UpdateEnrollmentItem(
        enrollment.Id,
        EnrollmentUpdate(MonthlyFeeOverride=None),
        db=db,
        user=ADMIN,
    )
    assert cleared.MonthlyFeeOverride is None
    assert cleared.EffectiveFee == 150000
    assert cleared.EffectiveFeeSource == "child_default"


def test_duplicate_active_enrollment_conflicts(db):
    child = enrollments_router.CreateChildItem(_ChildPayload("0"), db=db, user=ADMIN)
    enrollments_router.CreateEnrollmentItem(EnrollmentCreate(ChildId=child.Id), db=db, user=ADMIN)
    with pytest.raises(HTTPException) as exc_info:
        enrollments_router.CreateEnrollmentItem(EnrollmentCreate(ChildId=child.Id), db=db, user=ADMIN)
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail["Code"] == "CONFLICT"


def test_lock_conflict_reports_holder_and_expiry(db):
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42), db=db, user=TEACHER)
    lock = progress_router.LockProgressCard(card.Id, db=db, user=TEACHER)
    assert lock.IsLocked
    assert lock.LockedBy == TEACHER.Id

    with pytest.raises(HTTPException) as exc_info:
        progress_router.LockProgressCard(card.Id, db=db, user=OTHER_TEACHER)
    assert exc_info.value.status_code == 409
    detail = exc_info.value.detail
    assert detail["Code"] == "CARD_LOCKED"
    assert detail["Details"]["LockedBy"] == TEACHER.Id
    assert detail["Details"]["ExpiresAt"].endswith("+00:00")
    assert datetime.fromisoformat(detail["Details"]["ExpiresAt"]) == lock.ExpiresAt
    assert lock.ExpiresAt.utcoffset() == timedelta(0)

    with pytest.raises(HTTPException) as exc_info:
        progress_router.UnlockProgressCard(card.Id, db=db, user=OTHER_TEACHER)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["Code"] == "NOT_LOCK_HOLDER"


def test_batch_move_returns_per_item_results(db):
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42), db=db, user=TEACHER)
    response = progress_router.BatchMoveProgressCards(
        BatchMoveRequest(
            Moves=[
                BatchMoveItem(CardId=card.Id, Status="in_progress", Position=0, Version=card.Version),
                BatchMoveItem(CardId=card.Id + 100, Status="in_progress", Position=1, Version=card.Version),
            ]
        ),
        db=db,
        user=TEACHER,
    )
    assert [entry.CardId for entry in response.Updated] == [card.Id]
    assert [entry.Code for entry in response.Failed] == ["CARD_NOT_FOUND"]


def test_malformed_batch_is_rejected(db):
    with pytest.raises(HTTPException) as exc_info:
        progress_router.BatchMoveProgressCards(BatchMoveRequest(Moves=[]), db=db, user=TEACHER)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["Code"] == "VALIDATION_ERROR"


def test_logout_releases_card_locks(db):
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42), db=db, user=TEACHER)
    progress_router.LockProgressCard(card.Id, db=db, user=TEACHER)

    response = auth_router.Logout(user=TEACHER, db=db)
    assert response.ReleasedLocks == 1
    assert response.RevokedTokens == 0

    lock = progress_router.LockProgressCard(card.Id, db=db, user=OTHER_TEACHER)
    assert lock.LockedBy == OTHER_TEACHER.Id


def _AddTeacher(db, user_id: int, school_id: int) -> User:
    teacher = User(
        Id=user_id,
        Username=f"teacher{user_id}",
        PasswordHash="not-a-real-hash",
        Role=TEACHER_ROLE,
        SchoolId=school_id,
        IsActive=True,
    )
    db.add(teacher)
    db.commit()
    return teacher


def test_card_version_carries_utc_offset(db):
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42), db=db, user=TEACHER)
    assert card.Version.utcoffset() == timedelta(0)
    assert card.CreatedAt.utcoffset() == timedelta(0)
    assert card.Version.isoformat().endswith("+00:00")


def test_admin_assigns_card_to_teacher_in_own_school(db):
    _AddTeacher(db, 31, school_id=1)
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42, TeacherId=31), db=db, user=ADMIN)
    assert card.TeacherId == 31
    assert card.CreatedBy == ADMIN.Id


def test_admin_cannot_assign_card_to_teacher_elsewhere(db):
    _AddTeacher(db, 30, school_id=2)
    with pytest.raises(HTTPException) as exc_info:
        progress_router.CreateProgressCard(CardCreate(LessonId=42, TeacherId=30), db=db, user=ADMIN)
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail["Message"] == "Teacher not found"

    with pytest.raises(HTTPException) as exc_info:
        progress_router.CreateProgressCard(CardCreate(LessonId=42, TeacherId=999), db=db, user=ADMIN)
    assert exc_info.value.status_code == 404


def test_edit_card_respects_scope_and_locks(db):
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42), db=db, user=TEACHER)

    edited = progress_router.UpdateProgressCard(card.Id, CardUpdate(Title="Red rods"), db=db, user=TEACHER)
    assert edited.Title == "Red rods"

    with pytest.raises(HTTPException) as exc_info:
        progress_router.UpdateProgressCard(card.Id, CardUpdate(Title="Spindle box"), db=db, user=OTHER_TEACHER)
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail["Code"] == "CARD_NOT_FOUND"

    progress_router.LockProgressCard(card.Id, db=db, user=TEACHER)
    with pytest.raises(HTTPException) as exc_info:
        progress_router.UpdateProgressCard(card.Id, CardUpdate(Title="Spindle box"), db=db, user=ADMIN)
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail["Code"] == "CARD_LOCKED"

    with pytest.raises(HTTPException) as exc_info:
        progress_router.UpdateProgressCard(card.Id, CardUpdate(Title="Spindle box"), db=db, user=OTHER_ADMIN)
    assert exc_info.value.status_code == 404


def test_deleted_card_keeps_audit_trail_for_admins(db):
    card = progress_router.CreateProgressCard(CardCreate(LessonId=42), db=db, user=TEACHER)
    trail = progress_router.GetProgressCardAudit(card.Id, db=db, user=TEACHER)
    assert [entry.Action for entry in trail.Entries] == ["created"]
    assert trail.Entries[0].After["LessonId"] == 42

    assert progress_router.DeleteProgressCard(card.Id, db=db, user=TEACHER) is None

    with pytest.raises(HTTPException) as exc_info:
        progress_router.GetProgressCardAudit(card.Id, db=db, user=TEACHER)
    assert exc_info.value.status_code == 404

    trail = progress_router.GetProgressCardAudit(card.Id, db=db, user=ADMIN)
    assert trail.CardId == card.Id
    assert [entry.Action for entry in trail.Entries] == ["created", "deleted"]
    assert trail.Entries[1].ActorUserId == TEACHER.Id
    assert trail.Entries[1].CreatedAt.utcoffset() == timedelta(0)
