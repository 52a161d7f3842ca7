import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError, ProgrammingError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, SchoolError, ToHttpException
from app.db import GetDb
from app.modules.auth.deps import UserContext
from app.modules.enrollments.models import Child, Enrollment
from app.modules.enrollments.schemas import (
    ChildCreate,
    ChildFeeDetailsOut,
    ChildOut,
    ChildUpdate,
    EffectiveFeeOut,
    EnrollmentCreate,
    EnrollmentOut,
    EnrollmentUpdate,
    FeeStatisticsOut,
)
from app.modules.enrollments.services.child_service import CreateChild, GetChild, ListChildren, UpdateChild
from app.modules.enrollments.services.enrollment_service import (
    CreateEnrollment,
    GetEnrollment,
    ListEnrollments,
    UpdateEnrollment,
)
from app.modules.enrollments.services.fee_service import (
    EnrollmentFeeResolution,
    GetBulkEffectiveFees,
    GetChildFeeDetails,
    GetEffectiveFee,
    GetSchoolFeeStatistics,
    ResolveEffectiveFee,
)
from app.modules.enrollments.utils.currency import FormatForDisplay, ToMinorUnits
from app.modules.enrollments.utils.rbac import RequireSchoolAdmin

logger = logging.getLogger("enrollments")

router = APIRouter(prefix="/api/admin", tags=["enrollments"])


def _handle_school_error(exc: SchoolError) -> None:
    raise ToHttpException(exc) from exc


def _handle_integrity_error(db: Session, exc: IntegrityError) -> None:
    db.rollback()
    logger.warning("enrollment integrity conflict: %s", exc.orig)
    _handle_school_error(ConflictError("Child already has an active enrollment"))


def _handle_db_error(exc: Exception) -> None:
    logger.exception("enrollments database error")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="School storage not initialized. Run alembic upgrade head.",
    ) from exc


def _ConvertFee(data: dict, field: str) -> dict:
    if data.get(field) is not None:
        data[field] = ToMinorUnits(data[field])
    return data


def _BuildChildOut(child: Child) -> ChildOut:
    return ChildOut(
        Id=child.Id,
        FirstName=child.FirstName,
        LastName=child.LastName,
        DateOfBirth=child.DateOfBirth,
        Gender=child.Gender,
        StartDate=child.StartDate,
        SpecialNeeds=child.SpecialNeeds,
        MedicalConditions=child.MedicalConditions,
        MonthlyFee=child.MonthlyFee,
        MonthlyFeeDisplay=FormatForDisplay(child.MonthlyFee),
        Status=child.Status,
        CreatedByUserId=child.CreatedByUserId,
        UpdatedByUserId=child.UpdatedByUserId,
        CreatedAt=child.CreatedAt,
        UpdatedAt=child.UpdatedAt,
    )


def _BuildEnrollmentOut(enrollment: Enrollment, child: Child | None) -> EnrollmentOut:
    fee = ResolveEffectiveFee(child.MonthlyFee if child else 0, enrollment.MonthlyFeeOverride)
    child_name = f"{child.FirstName} {child.LastName}" if child else None
    return EnrollmentOut(
        Id=enrollment.Id,
        ChildId=enrollment.ChildId,
        ChildName=child_name,
        Status=enrollment.Status,
        EnrollmentDate=enrollment.EnrollmentDate,
        WithdrawalDate=enrollment.WithdrawalDate,
        MonthlyFeeOverride=enrollment.MonthlyFeeOverride,
        EffectiveFee=fee.AmountMinor,
        EffectiveFeeSource=fee.Source.value,
        EffectiveFeeDisplay=fee.Display,
        Notes=enrollment.Notes,
        CreatedByUserId=enrollment.CreatedByUserId,
        UpdatedByUserId=enrollment.UpdatedByUserId,
        CreatedAt=enrollment.CreatedAt,
        UpdatedAt=enrollment.UpdatedAt,
    )


def _BuildEffectiveFeeOut(resolution: EnrollmentFeeResolution) -> EffectiveFeeOut:
    return EffectiveFeeOut(
        EnrollmentId=resolution.EnrollmentId,
        ChildId=resolution.ChildId,
        EffectiveFee=resolution.Fee.AmountMinor,
        Source=resolution.Fee.Source.value,
        Display=resolution.Fee.Display,
        ChildDefaultFee=resolution.ChildDefaultFee,
        EnrollmentOverride=resolution.EnrollmentOverride,
    )


def _LoadChildren(db: Session, school_id: int, child_ids: set[int]) -> dict[int, Child]:
    if not child_ids:
        return {}
    children = db.query(Child).filter(Child.SchoolId == school_id, Child.Id.in_(child_ids)).all()
    return {child.Id: child for child in children}


@router.get("/children", response_model=list[ChildOut])
def ListChildItems(
    status_filter: str | None = Query(default="active", alias="status"),
    search: str | None = None,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> list[ChildOut]:
    try:
        children = ListChildren(db, user.SchoolId, status=status_filter, search=search)
        return [_BuildChildOut(child) for child in children]
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post("/children", response_model=ChildOut, status_code=status.HTTP_201_CREATED)
def CreateChildItem(
    payload: ChildCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> ChildOut:
    try:
        data = _ConvertFee(payload.model_dump(), "MonthlyFee")
        record = CreateChild(db, data, user.SchoolId, user.Id)
        return _BuildChildOut(record)
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}", response_model=ChildOut)
def GetChildItem(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> ChildOut:
    try:
        return _BuildChildOut(GetChild(db, child_id, user.SchoolId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.patch("/children/{child_id}", response_model=ChildOut)
def UpdateChildItem(
    child_id: int,
    payload: ChildUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> ChildOut:
    try:
        data = _ConvertFee(payload.model_dump(exclude_unset=True), "MonthlyFee")
        record = UpdateChild(db, child_id, data, user.SchoolId, user.Id)
        return _BuildChildOut(record)
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/children/{child_id}/fee-details", response_model=ChildFeeDetailsOut)
def GetChildFeeDetailsItem(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> ChildFeeDetailsOut:
    try:
        details = GetChildFeeDetails(db, child_id, user.SchoolId)
        return ChildFeeDetailsOut(
            ChildId=details.ChildId,
            DefaultFee=details.DefaultFee,
            DefaultFeeDisplay=details.DefaultFeeDisplay,
            Enrollments=[_BuildEffectiveFeeOut(entry) for entry in details.Enrollments],
            Warnings=details.Warnings,
        )
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/enrollments", response_model=list[EnrollmentOut])
def ListEnrollmentItems(
    status_filter: str | None = Query(default=None, alias="status"),
    child_id: int | None = None,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> list[EnrollmentOut]:
    try:
        enrollments = ListEnrollments(db, user.SchoolId, status=status_filter, child_id=child_id)
        children = _LoadChildren(db, user.SchoolId, {entry.ChildId for entry in enrollments})
        return [_BuildEnrollmentOut(entry, children.get(entry.ChildId)) for entry in enrollments]
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.post("/enrollments", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
def CreateEnrollmentItem(
    payload: EnrollmentCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> EnrollmentOut:
    try:
        data = _ConvertFee(payload.model_dump(), "MonthlyFeeOverride")
        record = CreateEnrollment(db, data, user.SchoolId, user.Id)
        return _BuildEnrollmentOut(record, GetChild(db, record.ChildId, user.SchoolId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except IntegrityError as exc:
        _handle_integrity_error(db, exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/enrollments/{enrollment_id}", response_model=EnrollmentOut)
def GetEnrollmentItem(
    enrollment_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> EnrollmentOut:
    try:
        record = GetEnrollment(db, enrollment_id, user.SchoolId)
        children = _LoadChildren(db, user.SchoolId, {record.ChildId})
        return _BuildEnrollmentOut(record, children.get(record.ChildId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.patch("/enrollments/{enrollment_id}", response_model=EnrollmentOut)
def UpdateEnrollmentItem(
    enrollment_id: int,
    payload: EnrollmentUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> EnrollmentOut:
    try:
        data = _ConvertFee(payload.model_dump(exclude_unset=True), "MonthlyFeeOverride")
        record = UpdateEnrollment(db, enrollment_id, data, user.SchoolId, user.Id)
        children = _LoadChildren(db, user.SchoolId, {record.ChildId})
        return _BuildEnrollmentOut(record, children.get(record.ChildId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except IntegrityError as exc:
        _handle_integrity_error(db, exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/enrollments/{enrollment_id}/effective-fee", response_model=EffectiveFeeOut)
def GetEffectiveFeeItem(
    enrollment_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> EffectiveFeeOut:
    try:
        return _BuildEffectiveFeeOut(GetEffectiveFee(db, enrollment_id, user.SchoolId))
    except SchoolError as exc:
        _handle_school_error(exc)
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/enrollments-fees", response_model=list[EffectiveFeeOut])
def GetBulkEffectiveFeeItems(
    ids: str,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> list[EffectiveFeeOut]:
    try:
        enrollment_ids = [int(value) for value in ids.split(",") if value.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid enrollment ids") from exc
    try:
        resolved = GetBulkEffectiveFees(db, enrollment_ids, user.SchoolId)
        return [_BuildEffectiveFeeOut(resolved[item]) for item in enrollment_ids if item in resolved]
    except ProgrammingError as exc:
        _handle_db_error(exc)


@router.get("/fees/statistics", response_model=FeeStatisticsOut)
def GetFeeStatisticsItem(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireSchoolAdmin()),
) -> FeeStatisticsOut:
    try:
        stats = GetSchoolFeeStatistics(db, user.SchoolId)
        return FeeStatisticsOut(
            TotalChildren=stats.TotalChildren,
            ChildrenWithFees=stats.ChildrenWithFees,
            ChildrenWithoutFees=stats.ChildrenWithoutFees,
            TotalEnrollments=stats.TotalEnrollments,
            EnrollmentsWithOverrides=stats.EnrollmentsWithOverrides,
            AverageChildFee=stats.AverageChildFee,
            AverageChildFeeDisplay=FormatForDisplay(stats.AverageChildFee),
            AverageEffectiveFee=stats.AverageEffectiveFee,
            AverageEffectiveFeeDisplay=FormatForDisplay(stats.AverageEffectiveFee),
            TotalMonthlyRevenue=stats.TotalMonthlyRevenue,
            TotalMonthlyRevenueDisplay=FormatForDisplay(stats.TotalMonthlyRevenue),
        )
    except ProgrammingError as exc:
        _handle_db_error(exc)
