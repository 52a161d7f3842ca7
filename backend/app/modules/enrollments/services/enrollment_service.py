from __future__ import annotations

from datetime import date, datetime
import logging

from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.modules.enrollments.models import (
    ENROLLMENT_STATUS_ACTIVE,
    ENROLLMENT_STATUS_ARCHIVED,
    ENROLLMENT_STATUS_INACTIVE,
    ENROLLMENT_STATUS_WITHDRAWN,
    Child,
    Enrollment,
)
from app.modules.enrollments.utils.currency import ValidateFeeBounds

logger = logging.getLogger("enrollments")

ENROLLMENT_STATUSES = {
    ENROLLMENT_STATUS_ACTIVE,
    ENROLLMENT_STATUS_INACTIVE,
    ENROLLMENT_STATUS_WITHDRAWN,
    ENROLLMENT_STATUS_ARCHIVED,
}

STATUS_TRANSITIONS = {
    ENROLLMENT_STATUS_ACTIVE: {ENROLLMENT_STATUS_INACTIVE, ENROLLMENT_STATUS_WITHDRAWN},
    ENROLLMENT_STATUS_INACTIVE: {ENROLLMENT_STATUS_ACTIVE, ENROLLMENT_STATUS_WITHDRAWN},
    ENROLLMENT_STATUS_WITHDRAWN: {ENROLLMENT_STATUS_ARCHIVED},
    ENROLLMENT_STATUS_ARCHIVED: set(),
}


def _ValidateStatus(value: str) -> str:
    if value not in ENROLLMENT_STATUSES:
        raise ValidationError(f"Invalid enrollment status: {value}")
    return value


def _ValidateOverride(value: int | None) -> int | None:
    if value is None:
        return None
    return ValidateFeeBounds(value)


def _EnsureChildInSchool(db: Session, child_id: int | None, school_id: int) -> Child:
    if not child_id:
        raise ValidationError("Child ID is required for enrollment creation")
    child = db.query(Child).filter(Child.Id == child_id, Child.SchoolId == school_id).first()
    if not child:
        raise NotFoundError("Child not found")
    return child


def _EnsureNoOtherActive(db: Session, child_id: int, school_id: int, exclude_id: int | None = None) -> None:
    query = db.query(Enrollment.Id).filter(
        Enrollment.SchoolId == school_id,
        Enrollment.ChildId == child_id,
        Enrollment.Status == ENROLLMENT_STATUS_ACTIVE,
    )
    if exclude_id is not None:
        query = query.filter(Enrollment.Id != exclude_id)
    if query.first():
        raise ConflictError("Child already has an active enrollment", {"ChildId": child_id})


def CanTransition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in STATUS_TRANSITIONS.get(current, set())


def GetEnrollment(db: Session, enrollment_id: int, school_id: int) -> Enrollment:
    record = (
        db.query(Enrollment)
        .filter(Enrollment.Id == enrollment_id, Enrollment.SchoolId == school_id)
        .first()
    )
    if not record:
        raise NotFoundError("Enrollment not found")
    return record


def ListEnrollments(
    db: Session,
    school_id: int,
    status: str | None = None,
    child_id: int | None = None,
) -> list[Enrollment]:
    query = db.query(Enrollment).filter(Enrollment.SchoolId == school_id)
    if status:
        query = query.filter(Enrollment.Status == _ValidateStatus(status))
    if child_id is not None:
        query = query.filter(Enrollment.ChildId == child_id)
    return query.order_by(Enrollment.EnrollmentDate.desc(), Enrollment.Id.desc()).all()


def CreateEnrollment(db: Session, payload: dict, school_id: int, actor_id: int) -> Enrollment:
    override = _ValidateOverride(payload.get("MonthlyFeeOverride"))
    child = _EnsureChildInSchool(db, payload.get("ChildId"), school_id)
    status = _ValidateStatus(payload.get("Status") or ENROLLMENT_STATUS_ACTIVE)
    if status not in {ENROLLMENT_STATUS_ACTIVE, ENROLLMENT_STATUS_INACTIVE}:
        raise ValidationError("New enrollments must be active or inactive")
    if status == ENROLLMENT_STATUS_ACTIVE:
        _EnsureNoOtherActive(db, child.Id, school_id)

    now = datetime.utcnow()
    record = Enrollment(
        SchoolId=school_id,
        ChildId=child.Id,
        Status=status,
        EnrollmentDate=payload.get("EnrollmentDate") or date.today(),
        MonthlyFeeOverride=override,
        Notes=payload.get("Notes"),
        CreatedByUserId=actor_id,
        UpdatedByUserId=actor_id,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(
        "enrollment created school_id=%s enrollment_id=%s child_id=%s override=%s actor_id=%s",
        school_id,
        record.Id,
        child.Id,
        override,
        actor_id,
    )
    return record


def UpdateEnrollment(
    db: Session,
    enrollment_id: int,
    payload: dict,
    school_id: int,
    actor_id: int,
) -> Enrollment:
    record = GetEnrollment(db, enrollment_id, school_id)
    if record.Status == ENROLLMENT_STATUS_ARCHIVED:
        raise ValidationError("Cannot modify archived enrollments")

    data = payload
    override_changed = "MonthlyFeeOverride" in data
    override = _ValidateOverride(data.get("MonthlyFeeOverride")) if override_changed else None

    target_status = record.Status
    if "Status" in data and data["Status"] is not None:
        target_status = _ValidateStatus(data["Status"])
        if not CanTransition(record.Status, target_status):
            raise ValidationError(
                f"Invalid status transition from {record.Status} to {target_status}",
                {"From": record.Status, "To": target_status},
            )

    if target_status == ENROLLMENT_STATUS_ACTIVE and record.Status != ENROLLMENT_STATUS_ACTIVE:
        _EnsureNoOtherActive(db, record.ChildId, school_id, exclude_id=record.Id)

    if target_status == ENROLLMENT_STATUS_WITHDRAWN and record.Status != ENROLLMENT_STATUS_WITHDRAWN:
        withdrawal_date = data.get("WithdrawalDate") or date.today()
        if withdrawal_date < record.EnrollmentDate:
            raise ValidationError("Withdrawal date cannot precede the enrollment date")
        record.WithdrawalDate = withdrawal_date

    previous_override = record.MonthlyFeeOverride
    if override_changed:
        record.MonthlyFeeOverride = override
    if "Notes" in data:
        record.Notes = data.get("Notes")
    record.Status = target_status
    record.UpdatedByUserId = actor_id
    record.UpdatedAt = datetime.utcnow()
    db.add(record)
    db.commit()
    db.refresh(record)

    if override_changed and previous_override != override:
        logger.info(
            "enrollment override changed school_id=%s enrollment_id=%s from=%s to=%s actor_id=%s",
            school_id,
            record.Id,
            previous_override,
            override,
            actor_id,
        )
    return record
