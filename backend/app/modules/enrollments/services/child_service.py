from __future__ import annotations

from datetime import date, datetime
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.modules.enrollments.models import CHILD_STATUS_ACTIVE, CHILD_STATUS_INACTIVE, Child
from app.modules.enrollments.utils.currency import ValidateFeeBounds

logger = logging.getLogger("enrollments")

CHILD_STATUSES = {CHILD_STATUS_ACTIVE, CHILD_STATUS_INACTIVE}
_PROFILE_FIELDS = ("Gender", "StartDate", "SpecialNeeds", "MedicalConditions")


def _NormalizeName(value: str | None, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} required")
    if len(cleaned) > 100:
        raise ValidationError(f"{label} is too long")
    return cleaned


def _ValidateDateOfBirth(value: date | None) -> date:
    if not value:
        raise ValidationError("Date of birth required")
    if value > date.today():
        raise ValidationError("Date of birth cannot be in the future")
    return value


def _ValidateStatus(value: str) -> str:
    if value not in CHILD_STATUSES:
        raise ValidationError(f"Invalid child status: {value}")
    return value


def GetChild(db: Session, child_id: int, school_id: int) -> Child:
    record = db.query(Child).filter(Child.Id == child_id, Child.SchoolId == school_id).first()
    if not record:
        raise NotFoundError("Child not found")
    return record


def ListChildren(
    db: Session,
    school_id: int,
    status: str | None = CHILD_STATUS_ACTIVE,
    search: str | None = None,
) -> list[Child]:
    query = db.query(Child).filter(Child.SchoolId == school_id)
    if status:
        query = query.filter(Child.Status == _ValidateStatus(status))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Child.FirstName.like(pattern), Child.LastName.like(pattern)))
    return query.order_by(Child.LastName.asc(), Child.FirstName.asc(), Child.Id.asc()).all()


def CreateChild(db: Session, payload: dict, school_id: int, actor_id: int) -> Child:
    monthly_fee = ValidateFeeBounds(payload.get("MonthlyFee") or 0)
    now = datetime.utcnow()
    record = Child(
        SchoolId=school_id,
        FirstName=_NormalizeName(payload.get("FirstName"), "First name"),
        LastName=_NormalizeName(payload.get("LastName"), "Last name"),
        DateOfBirth=_ValidateDateOfBirth(payload.get("DateOfBirth")),
        Gender=payload.get("Gender"),
        StartDate=payload.get("StartDate"),
        SpecialNeeds=payload.get("SpecialNeeds"),
        MedicalConditions=payload.get("MedicalConditions"),
        MonthlyFee=monthly_fee,
        Status=_ValidateStatus(payload.get("Status") or CHILD_STATUS_ACTIVE),
        CreatedByUserId=actor_id,
        UpdatedByUserId=actor_id,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(
        "child created school_id=%s child_id=%s monthly_fee=%s actor_id=%s",
        school_id,
        record.Id,
        record.MonthlyFee,
        actor_id,
    )
    return record


def UpdateChild(db: Session, child_id: int, payload: dict, school_id: int, actor_id: int) -> Child:
    record = GetChild(db, child_id, school_id)
    data = payload

    if "MonthlyFee" in data and data["MonthlyFee"] is not None:
        monthly_fee = ValidateFeeBounds(data["MonthlyFee"])
    else:
        monthly_fee = None

    if "FirstName" in data and data["FirstName"] is not None:
        record.FirstName = _NormalizeName(data["FirstName"], "First name")
    if "LastName" in data and data["LastName"] is not None:
        record.LastName = _NormalizeName(data["LastName"], "Last name")
    if "DateOfBirth" in data and data["DateOfBirth"] is not None:
        record.DateOfBirth = _ValidateDateOfBirth(data["DateOfBirth"])
    if "Status" in data and data["Status"] is not None:
        record.Status = _ValidateStatus(data["Status"])
    for field in _PROFILE_FIELDS:
        if field in data:
            setattr(record, field, data.get(field))

    previous_fee = record.MonthlyFee
    if monthly_fee is not None:
        record.MonthlyFee = monthly_fee

    record.UpdatedByUserId = actor_id
    record.UpdatedAt = datetime.utcnow()
    db.add(record)
    db.commit()
    db.refresh(record)
    if monthly_fee is not None and monthly_fee != previous_fee:
        logger.info(
            "child fee changed school_id=%s child_id=%s from=%s to=%s actor_id=%s",
            school_id,
            record.Id,
            previous_fee,
            monthly_fee,
            actor_id,
        )
    return record
