from datetime import datetime
from typing import Any, Dict

from payroll_api.extensions import db

# Highest wins when two sources disagree about the same fact.
SOURCE_PRIORITY = ("default", "ai", "manual", "compliance")


def source_rank(source: str) -> int:
    try:
        return SOURCE_PRIORITY.index((source or "default").lower())
    except ValueError:
        return 0


class Shift(db.Model):
    __tablename__ = "shifts"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    name = db.Column(db.String(60), nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    break_duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    late_threshold_minutes = db.Column(db.Integer, nullable=False, default=15)
    early_out_threshold_minutes = db.Column(db.Integer, nullable=False, default=15)
    duration_hours = db.Column(db.Numeric(4, 2), nullable=False, default=8)
    is_overnight = db.Column(db.Boolean, nullable=False, default=False)
    # lowercase day names, e.g. ["sunday"] or ["friday", "saturday"]
    weekly_off_days = db.Column(db.JSON, nullable=False, default=lambda: ["sunday"])
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_shift_org_name"),
        db.CheckConstraint("duration_hours >= 4 AND duration_hours <= 12", name="ck_shift_duration_hours"),
    )

    @property
    def crosses_midnight(self) -> bool:
        return bool(self.is_overnight) or self.end_time <= self.start_time

    def weekly_offs(self):
        return [str(d).strip().lower() for d in (self.weekly_off_days or ["sunday"])]


class EmployeeShift(db.Model):
    __tablename__ = "employee_shifts"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id", ondelete="RESTRICT"), nullable=False, index=True)
    effective_from = db.Column(db.Date, nullable=False, index=True)
    effective_to = db.Column(db.Date, nullable=True, index=True)  # null = open-ended
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    shift = db.relationship("Shift", lazy="joined")

    __table_args__ = (
        db.Index("ix_emp_shift_range", "employee_id", "effective_from", "effective_to"),
    )


class OrgHoliday(db.Model):
    __tablename__ = "org_holidays"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    is_optional = db.Column(db.Boolean, nullable=False, default=False)
    applies_to_shifts = db.Column(db.JSON, nullable=True)  # null = all shifts
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "date", name="uq_org_holiday_date"),
    )

    def applies_to(self, shift_id) -> bool:
        if not self.applies_to_shifts:
            return True
        return shift_id is not None and int(shift_id) in {int(s) for s in self.applies_to_shifts}


class AttendanceRecord(db.Model):
    """
    One row per (employee, calendar date).

    Derived columns (hours + the late/early/half/weekend/holiday flags) are
    written by services.attendance_engine on every punch-out or override,
    never patched piecemeal by callers.
    """

    __tablename__ = "attendance"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)

    punch_in_time = db.Column(db.DateTime, nullable=True)
    punch_out_time = db.Column(db.DateTime, nullable=True)
    total_hours = db.Column(db.Numeric(6, 2))
    effective_hours = db.Column(db.Numeric(6, 2))

    is_late = db.Column(db.Boolean, nullable=False, default=False)
    is_early_leave = db.Column(db.Boolean, nullable=False, default=False)
    is_half_day = db.Column(db.Boolean, nullable=False, default=False)
    is_absent = db.Column(db.Boolean, nullable=False, default=False)
    is_holiday = db.Column(db.Boolean, nullable=False, default=False)
    is_weekend = db.Column(db.Boolean, nullable=False, default=False)
    is_regularized = db.Column(db.Boolean, nullable=False, default=False)

    source = db.Column(db.String(16), nullable=False, default="default")

    # geofence evidence captured at punch time
    latitude = db.Column(db.Numeric(9, 6), nullable=True)
    longitude = db.Column(db.Numeric(9, 6), nullable=True)
    distance_m = db.Column(db.Numeric(10, 2), nullable=True)

    ai_hydration_meta = db.Column(db.JSON, nullable=True)
    ai_hydrated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    shift = db.relationship("Shift", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
        db.CheckConstraint("source in ('default','manual','ai','compliance')", name="ck_attendance_source"),
        db.Index("ix_attendance_org_date", "organization_id", "date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "employee_id": self.employee_id,
            "date": self.date.isoformat(),
            "shift_id": self.shift_id,
            "punch_in_time": self.punch_in_time.isoformat() if self.punch_in_time else None,
            "punch_out_time": self.punch_out_time.isoformat() if self.punch_out_time else None,
            "total_hours": float(self.total_hours) if self.total_hours is not None else None,
            "effective_hours": float(self.effective_hours) if self.effective_hours is not None else None,
            "is_late": self.is_late,
            "is_early_leave": self.is_early_leave,
            "is_half_day": self.is_half_day,
            "is_absent": self.is_absent,
            "is_holiday": self.is_holiday,
            "is_weekend": self.is_weekend,
            "is_regularized": self.is_regularized,
            "source": self.source,
            "latitude": float(self.latitude) if self.latitude is not None else None,
            "longitude": float(self.longitude) if self.longitude is not None else None,
            "distance_m": float(self.distance_m) if self.distance_m is not None else None,
        }


class MonthlyOverride(db.Model):
    """
    Full replacement of a month's attendance counts for one employee. When
    present it supersedes the aggregated computation; fields are never merged.
    """

    __tablename__ = "attendance_monthly_overrides"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    month = db.Column(db.SmallInteger, nullable=False)
    year = db.Column(db.SmallInteger, nullable=False)

    present_days = db.Column(db.Numeric(5, 1), nullable=False, default=0)
    half_days = db.Column(db.Integer, nullable=False, default=0)
    absent_days = db.Column(db.Numeric(5, 1), nullable=False, default=0)
    paid_leave_days = db.Column(db.Numeric(5, 1), nullable=False, default=0)
    lop_days = db.Column(db.Numeric(5, 1), nullable=False, default=0)
    late_count = db.Column(db.Integer, nullable=False, default=0)
    ot_hours = db.Column(db.Numeric(6, 2), nullable=False, default=0)

    source = db.Column(db.String(16), nullable=False, default="manual")
    approved_by = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "month", "year", name="uq_monthly_override_emp_period"),
        db.CheckConstraint("source in ('manual','ai_suggested','ai_approved')", name="ck_monthly_override_source"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "month": self.month,
            "year": self.year,
            "present_days": float(self.present_days or 0),
            "half_days": int(self.half_days or 0),
            "absent_days": float(self.absent_days or 0),
            "paid_leave_days": float(self.paid_leave_days or 0),
            "lop_days": float(self.lop_days or 0),
            "late_count": int(self.late_count or 0),
            "ot_hours": float(self.ot_hours or 0),
            "source": self.source,
            "approved_by": self.approved_by,
            "reason": self.reason,
        }
