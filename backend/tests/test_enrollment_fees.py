from datetime import date
from decimal import Decimal

import pytest

from app.core.errors import ConflictError, FeeOutOfRangeError, NotFoundError, ValidationError
from app.modules.enrollments.models import School
from app.modules.enrollments.services.child_service import CreateChild, ListChildren, UpdateChild
from app.modules.enrollments.services.enrollment_service import CreateEnrollment, UpdateEnrollment
from app.modules.enrollments.services.fee_service import (
    FeeSource,
    GetBulkEffectiveFees,
    GetChildFeeDetails,
    GetEffectiveFee,
    GetSchoolFeeStatistics,
)
from app.modules.enrollments.utils.currency import ToMinorUnits

SCHOOL_ID = 1
OTHER_SCHOOL_ID = 2
ADMIN_ID = 10


def _SeedSchools(db) -> None:
    db.add_all([School(Id=SCHOOL_ID, Name="Casa Montessori"), School(Id=OTHER_SCHOOL_ID, Name="Little Oaks")])
    db.commit()


def _CreateChild(db, school_id=SCHOOL_ID, **overrides):
    payload = {
        "FirstName": "Ana",
        "LastName": "Popescu",
        "DateOfBirth": date(2021, 5, 4),
        "MonthlyFee": 150000,
    }
    payload.update(overrides)
    return CreateChild(db, payload, school_id, ADMIN_ID)


def test_override_scenario_and_clearing(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    enrollment_a = CreateEnrollment(db, {"ChildId": child.Id, "EnrollmentDate": date(2025, 9, 1)}, SCHOOL_ID, ADMIN_ID)
    enrollment_b = CreateEnrollment(
        db,
        {"ChildId": child.Id, "Status": "inactive", "MonthlyFeeOverride": 120000},
        SCHOOL_ID,
        ADMIN_ID,
    )

    resolved_a = GetEffectiveFee(db, enrollment_a.Id, SCHOOL_ID)
    assert resolved_a.Fee.AmountMinor == 150000
    assert resolved_a.Fee.Source == FeeSource.ChildDefault

    resolved_b = GetEffectiveFee(db, enrollment_b.Id, SCHOOL_ID)
    assert resolved_b.Fee.AmountMinor == 120000
    assert resolved_b.Fee.Source == FeeSource.EnrollmentOverride

    UpdateEnrollment(db, enrollment_b.Id, {"MonthlyFeeOverride": None}, SCHOOL_ID, ADMIN_ID)
    cleared = GetEffectiveFee(db, enrollment_b.Id, SCHOOL_ID)
    assert cleared.Fee.AmountMinor == 150000
    assert cleared.Fee.Source == FeeSource.ChildDefault
    assert cleared.EnrollmentOverride is None


def test_negative_fee_rejected(db):
    _SeedSchools(db)
    with pytest.raises(FeeOutOfRangeError) as exc_info:
        _CreateChild(db, MonthlyFee=-100)
    assert "negative" in exc_info.value.Message


def test_fee_above_ceiling_rejected_on_create_and_update(db):
    _SeedSchools(db)
    with pytest.raises(FeeOutOfRangeError) as exc_info:
        _CreateChild(db, MonthlyFee=ToMinorUnits(Decimal("15000")))
    assert "exceed 10,000" in exc_info.value.Message

    child = _CreateChild(db)
    with pytest.raises(FeeOutOfRangeError):
        UpdateChild(db, child.Id, {"MonthlyFee": 1_500_000}, SCHOOL_ID, ADMIN_ID)
    db.refresh(child)
    assert child.MonthlyFee == 150000


def test_override_bounds_checked_on_enrollment(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    with pytest.raises(FeeOutOfRangeError):
        CreateEnrollment(db, {"ChildId": child.Id, "MonthlyFeeOverride": 1_000_001}, SCHOOL_ID, ADMIN_ID)
    enrollment = CreateEnrollment(db, {"ChildId": child.Id}, SCHOOL_ID, ADMIN_ID)
    with pytest.raises(FeeOutOfRangeError):
        UpdateEnrollment(db, enrollment.Id, {"MonthlyFeeOverride": -1}, SCHOOL_ID, ADMIN_ID)


def test_other_school_cannot_see_fees(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    enrollment = CreateEnrollment(db, {"ChildId": child.Id}, SCHOOL_ID, ADMIN_ID)
    other_child = _CreateChild(db, school_id=OTHER_SCHOOL_ID, FirstName="Ion")
    other_enrollment = CreateEnrollment(db, {"ChildId": other_child.Id}, OTHER_SCHOOL_ID, ADMIN_ID)

    with pytest.raises(NotFoundError):
        GetEffectiveFee(db, enrollment.Id, OTHER_SCHOOL_ID)
    with pytest.raises(NotFoundError):
        GetChildFeeDetails(db, child.Id, OTHER_SCHOOL_ID)
    with pytest.raises(NotFoundError):
        UpdateChild(db, child.Id, {"MonthlyFee": 0}, OTHER_SCHOOL_ID, ADMIN_ID)
    with pytest.raises(NotFoundError):
        CreateEnrollment(db, {"ChildId": child.Id, "Status": "inactive"}, OTHER_SCHOOL_ID, ADMIN_ID)

    bulk = GetBulkEffectiveFees(db, [enrollment.Id, other_enrollment.Id], SCHOOL_ID)
    assert list(bulk.keys()) == [enrollment.Id]
    assert [record.Id for record in ListChildren(db, SCHOOL_ID)] == [child.Id]


def test_only_one_active_enrollment_per_child(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    CreateEnrollment(db, {"ChildId": child.Id}, SCHOOL_ID, ADMIN_ID)
    with pytest.raises(ConflictError):
        CreateEnrollment(db, {"ChildId": child.Id}, SCHOOL_ID, ADMIN_ID)

    inactive = CreateEnrollment(db, {"ChildId": child.Id, "Status": "inactive"}, SCHOOL_ID, ADMIN_ID)
    with pytest.raises(ConflictError):
        UpdateEnrollment(db, inactive.Id, {"Status": "active"}, SCHOOL_ID, ADMIN_ID)


def test_archived_enrollment_is_immutable(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    enrollment = CreateEnrollment(
        db,
        {"ChildId": child.Id, "EnrollmentDate": date(2025, 9, 1), "MonthlyFeeOverride": 90000},
        SCHOOL_ID,
        ADMIN_ID,
    )

    with pytest.raises(ValidationError):
        UpdateEnrollment(db, enrollment.Id, {"Status": "archived"}, SCHOOL_ID, ADMIN_ID)

    withdrawn = UpdateEnrollment(db, enrollment.Id, {"Status": "withdrawn"}, SCHOOL_ID, ADMIN_ID)
    assert withdrawn.WithdrawalDate == date.today()
    UpdateEnrollment(db, enrollment.Id, {"Status": "archived"}, SCHOOL_ID, ADMIN_ID)

    with pytest.raises(ValidationError) as exc_info:
        UpdateEnrollment(db, enrollment.Id, {"MonthlyFeeOverride": None}, SCHOOL_ID, ADMIN_ID)
    assert "archived" in exc_info.value.Message
    assert GetEffectiveFee(db, enrollment.Id, SCHOOL_ID).Fee.AmountMinor == 90000


def test_withdrawal_cannot_precede_enrollment(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    enrollment = CreateEnrollment(db, {"ChildId": child.Id, "EnrollmentDate": date(2025, 9, 1)}, SCHOOL_ID, ADMIN_ID)
    with pytest.raises(ValidationError):
        UpdateEnrollment(
            db,
            enrollment.Id,
            {"Status": "withdrawn", "WithdrawalDate": date(2025, 8, 1)},
            SCHOOL_ID,
            ADMIN_ID,
        )


def test_child_fee_details_flag_redundant_override(db):
    _SeedSchools(db)
    child = _CreateChild(db)
    CreateEnrollment(db, {"ChildId": child.Id, "MonthlyFeeOverride": 150000}, SCHOOL_ID, ADMIN_ID)

    details = GetChildFeeDetails(db, child.Id, SCHOOL_ID)
    assert details.DefaultFeeDisplay == "1,500 RON"
    assert len(details.Enrollments) == 1
    assert details.Enrollments[0].Fee.Source == FeeSource.EnrollmentOverride
    assert len(details.Warnings) == 1
    assert "unnecessary" in details.Warnings[0]


def test_school_fee_statistics(db):
    _SeedSchools(db)
    paying = _CreateChild(db)
    free = _CreateChild(db, FirstName="Mihai", MonthlyFee=0)
    CreateEnrollment(db, {"ChildId": paying.Id}, SCHOOL_ID, ADMIN_ID)
    CreateEnrollment(db, {"ChildId": free.Id, "MonthlyFeeOverride": 50000}, SCHOOL_ID, ADMIN_ID)
    other_child = _CreateChild(db, school_id=OTHER_SCHOOL_ID)
    CreateEnrollment(db, {"ChildId": other_child.Id}, OTHER_SCHOOL_ID, ADMIN_ID)

    stats = GetSchoolFeeStatistics(db, SCHOOL_ID)
    assert stats.TotalChildren == 2
    assert stats.ChildrenWithFees == 1
    assert stats.ChildrenWithoutFees == 1
    assert stats.TotalEnrollments == 2
    assert stats.EnrollmentsWithOverrides == 1
    assert stats.AverageChildFee == 75000
    assert stats.AverageEffectiveFee == 100000
    assert stats.TotalMonthlyRevenue == 200000
