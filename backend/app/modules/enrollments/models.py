from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Text, text

from app.db import Base

CHILD_STATUS_ACTIVE = "active"
CHILD_STATUS_INACTIVE = "inactive"

ENROLLMENT_STATUS_ACTIVE = "active"
ENROLLMENT_STATUS_INACTIVE = "inactive"
ENROLLMENT_STATUS_WITHDRAWN = "withdrawn"
ENROLLMENT_STATUS_ARCHIVED = "archived"


class School(Base):
    __tablename__ = "schools"
    __table_args__ = ({"schema": "school"},)

    Id = Column(Integer, primary_key=True, index=True)
    Name = Column(String(200), nullable=False)
    CreatedAt = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class Child(Base):
    __tablename__ = "children"
    __table_args__ = ({"schema": "school"},)

    Id = Column(Integer, primary_key=True, index=True)
    SchoolId = Column(Integer, nullable=False, index=True)
    FirstName = Column(String(100), nullable=False)
    LastName = Column(String(100), nullable=False)
    DateOfBirth = Column(Date, nullable=False)
    Gender = Column(String(50))
    StartDate = Column(Date)
    SpecialNeeds = Column(Text)
    MedicalConditions = Column(Text)
    MonthlyFee = Column(Integer, nullable=False, default=0)
    Status = Column(String(20), nullable=False, default=CHILD_STATUS_ACTIVE)
    CreatedByUserId = Column(Integer, nullable=False)
    UpdatedByUserId = Column(Integer)
    CreatedAt = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    UpdatedAt = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        Index(
            "ux_school_enrollments_active_child",
            "SchoolId",
            "ChildId",
            unique=True,
            mssql_where=text("Status = 'active'"),
            sqlite_where=text("Status = 'active'"),
        ),
        {"schema": "school"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    SchoolId = Column(Integer, nullable=False, index=True)
    ChildId = Column(Integer, nullable=False, index=True)
    Status = Column(String(20), nullable=False, default=ENROLLMENT_STATUS_ACTIVE)
    EnrollmentDate = Column(Date, nullable=False)
    WithdrawalDate = Column(Date)
    MonthlyFeeOverride = Column(Integer)
    Notes = Column(Text)
    CreatedByUserId = Column(Integer, nullable=False)
    UpdatedByUserId = Column(Integer)
    CreatedAt = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    UpdatedAt = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
