from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ChildOut(BaseModel):
    Id: int
    FirstName: str
    LastName: str
    DateOfBirth: date
    Gender: str | None = None
    StartDate: date | None = None
    SpecialNeeds: str | None = None
    MedicalConditions: str | None = None
    MonthlyFee: int
    MonthlyFeeDisplay: str
    Status: str
    CreatedByUserId: int
    UpdatedByUserId: int | None = None
    CreatedAt: datetime
    UpdatedAt: datetime


class ChildCreate(BaseModel):
    FirstName: str = Field(min_length=1, max_length=100)
    LastName: str = Field(min_length=1, max_length=100)
    DateOfBirth: date
    Gender: str | None = Field(default=None, max_length=50)
    StartDate: date | None = None
    SpecialNeeds: str | None = None
    MedicalConditions: str | None = None
    MonthlyFee: Decimal = Decimal("0")
    Status: str | None = None


class ChildUpdate(BaseModel):
    FirstName: str | None = Field(default=None, min_length=1, max_length=100)
    LastName: str | None = Field(default=None, min_length=1, max_length=100)
    DateOfBirth: date | None = None
    Gender: str | None = Field(default=None, max_length=50)
    StartDate: date | None = None
    SpecialNeeds: str | None = None
    MedicalConditions: str | None = None
    MonthlyFee: Decimal | None = None
    Status: str | None = None


class EnrollmentOut(BaseModel):
    Id: int
    ChildId: int
    ChildName: str | None = None
    Status: str
    EnrollmentDate: date
    WithdrawalDate: date | None = None
    MonthlyFeeOverride: int | None = None
    EffectiveFee: int
    EffectiveFeeSource: str
    EffectiveFeeDisplay: str
    Notes: str | None = None
    CreatedByUserId: int
    UpdatedByUserId: int | None = None
    CreatedAt: datetime
    UpdatedAt: datetime


class EnrollmentCreate(BaseModel):
    ChildId: int
    EnrollmentDate: date | None = None
    MonthlyFeeOverride: Decimal | None = None
    Status: str | None = None
    Notes: str | None = None


class EnrollmentUpdate(BaseModel):
    Status: str | None = None
    MonthlyFeeOverride: Decimal | None = None
    WithdrawalDate: date | None = None
    Notes: str | None = None


class EffectiveFeeOut(BaseModel):
    EnrollmentId: int
    ChildId: int
    EffectiveFee: int
    Source: str
    Display: str
    ChildDefaultFee: int
    EnrollmentOverride: int | None = None


class ChildFeeDetailsOut(BaseModel):
    ChildId: int
    DefaultFee: int
    DefaultFeeDisplay: str
    Enrollments: list[EffectiveFeeOut]
    Warnings: list[str]


class FeeStatisticsOut(BaseModel):
    TotalChildren: int
    ChildrenWithFees: int
    ChildrenWithoutFees: int
    TotalEnrollments: int
    EnrollmentsWithOverrides: int
    AverageChildFee: int
    AverageChildFeeDisplay: str
    AverageEffectiveFee: int
    AverageEffectiveFeeDisplay: str
    TotalMonthlyRevenue: int
    TotalMonthlyRevenueDisplay: str
