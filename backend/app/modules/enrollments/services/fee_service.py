from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.modules.enrollments.models import (
    CHILD_STATUS_ACTIVE,
    ENROLLMENT_STATUS_ACTIVE,
    Child,
    Enrollment,
)
from app.modules.enrollments.utils.currency import FormatForDisplay


class FeeSource(str, Enum):
    EnrollmentOverride = "enrollment_override"
    ChildDefault = "child_default"
    NoFee = "no_fee"


@dataclass(frozen=True)
class EffectiveFee:
    AmountMinor: int
    Source: FeeSource

    @property
    def Display(self) -> str:
        return FormatForDisplay(self.AmountMinor)


@dataclass
class EnrollmentFeeResolution:
    EnrollmentId: int
    ChildId: int
    Fee: EffectiveFee
    ChildDefaultFee: int
    EnrollmentOverride: int | None


@dataclass
class ChildFeeDetails:
    ChildId: int
    DefaultFee: int
    Enrollments: list[EnrollmentFeeResolution] = field(default_factory=list)
    Warnings: list[str] = field(default_factory=list)

    @property
    def DefaultFeeDisplay(self) -> str:
        return FormatForDisplay(self.DefaultFee)


@dataclass
class SchoolFeeStatistics:
    TotalChildren: int
    ChildrenWithFees: int
    ChildrenWithoutFees: int
    TotalEnrollments: int
    EnrollmentsWithOverrides: int
    AverageChildFee: int
    AverageEffectiveFee: int
    TotalMonthlyRevenue: int


def ResolveEffectiveFee(child_default_minor: int, enrollment_override_minor: int | None) -> EffectiveFee:
    """Pick the fee billed for an enrollment.

    An override, when present, always wins, including an override of 0. Without
    one the child default applies; a default of 0 resolves to ``no_fee`` whether
    it was set explicitly or never configured.
    """
    if enrollment_override_minor is not None:
        return EffectiveFee(AmountMinor=enrollment_override_minor, Source=FeeSource.EnrollmentOverride)
    if child_default_minor > 0:
        return EffectiveFee(AmountMinor=child_default_minor, Source=FeeSource.ChildDefault)
    return EffectiveFee(AmountMinor=child_default_minor, Source=FeeSource.NoFee)


def ResolveEffectiveFeesForEnrollments(
    pairs: Iterable[tuple[int, int | None]],
) -> list[EffectiveFee]:
    return [ResolveEffectiveFee(default, override) for default, override in pairs]


def _BuildResolution(enrollment: Enrollment, child: Child) -> EnrollmentFeeResolution:
    return EnrollmentFeeResolution(
        EnrollmentId=enrollment.Id,
        ChildId=child.Id,
        Fee=ResolveEffectiveFee(child.MonthlyFee, enrollment.MonthlyFeeOverride),
        ChildDefaultFee=child.MonthlyFee,
        EnrollmentOverride=enrollment.MonthlyFeeOverride,
    )


def _EnrollmentWithChildQuery(db: Session, school_id: int):
    return (
        db.query(Enrollment, Child)
        .join(Child, Child.Id == Enrollment.ChildId)
        .filter(Enrollment.SchoolId == school_id, Child.SchoolId == school_id)
    )


def GetEffectiveFee(db: Session, enrollment_id: int, school_id: int) -> EnrollmentFeeResolution:
    row = _EnrollmentWithChildQuery(db, school_id).filter(Enrollment.Id == enrollment_id).first()
    if not row:
        raise NotFoundError("Enrollment not found")
    enrollment, child = row
    return _BuildResolution(enrollment, child)


def GetBulkEffectiveFees(
    db: Session,
    enrollment_ids: list[int],
    school_id: int,
) -> dict[int, EnrollmentFeeResolution]:
    if not enrollment_ids:
        return {}
    rows = _EnrollmentWithChildQuery(db, school_id).filter(Enrollment.Id.in_(enrollment_ids)).all()
    return {enrollment.Id: _BuildResolution(enrollment, child) for enrollment, child in rows}


def GetChildFeeDetails(db: Session, child_id: int, school_id: int) -> ChildFeeDetails:
    child = db.query(Child).filter(Child.Id == child_id, Child.SchoolId == school_id).first()
    if not child:
        raise NotFoundError("Child not found")

    enrollments = (
        db.query(Enrollment)
        .filter(Enrollment.ChildId == child.Id, Enrollment.SchoolId == school_id)
        .order_by(Enrollment.EnrollmentDate.desc(), Enrollment.Id.desc())
        .all()
    )
    details = ChildFeeDetails(
        ChildId=child.Id,
        DefaultFee=child.MonthlyFee,
        Enrollments=[_BuildResolution(enrollment, child) for enrollment in enrollments],
    )
    for enrollment in enrollments:
        if enrollment.MonthlyFeeOverride is not None and enrollment.MonthlyFeeOverride == child.MonthlyFee:
            details.Warnings.append(
                f"Enrollment {enrollment.Id} override is the same as the child default (unnecessary)"
            )
    return details


def _Average(total: int, count: int) -> int:
    if count == 0:
        return 0
    return int((Decimal(total) / Decimal(count)).to_integral_value(rounding=ROUND_HALF_UP))


def GetSchoolFeeStatistics(db: Session, school_id: int) -> SchoolFeeStatistics:
    children = (
        db.query(Child.MonthlyFee)
        .filter(Child.SchoolId == school_id, Child.Status == CHILD_STATUS_ACTIVE)
        .all()
    )
    with_fees = sum(1 for row in children if row.MonthlyFee > 0)

    rows = (
        _EnrollmentWithChildQuery(db, school_id)
        .filter(Enrollment.Status == ENROLLMENT_STATUS_ACTIVE)
        .all()
    )
    total_child_fees = 0
    total_effective = 0
    with_overrides = 0
    for enrollment, child in rows:
        fee = ResolveEffectiveFee(child.MonthlyFee, enrollment.MonthlyFeeOverride)
        total_child_fees += child.MonthlyFee
        total_effective += fee.AmountMinor
        if fee.Source == FeeSource.EnrollmentOverride:
            with_overrides += 1

    return SchoolFeeStatistics(
        TotalChildren=len(children),
        ChildrenWithFees=with_fees,
        ChildrenWithoutFees=len(children) - with_fees,
        TotalEnrollments=len(rows),
        EnrollmentsWithOverrides=with_overrides,
        AverageChildFee=_Average(total_child_fees, len(rows)),
        AverageEffectiveFee=_Average(total_effective, len(rows)),
        TotalMonthlyRevenue=total_effective,
    )
