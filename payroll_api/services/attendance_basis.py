# payroll_api/services/attendance_basis.py
from __future__ import annotations

import calendar as pycal
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from payroll_api.extensions import db
from payroll_api.common.errors import APIError, OverridePrecedenceError
from payroll_api.models.master import Employee
from payroll_api.models.attendance import AttendanceRecord, MonthlyOverride, OrgHoliday
from payroll_api.services.attendance_engine import effective_shift, is_weekly_off, DEFAULT_WEEKLY_OFFS

log = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HALF = Decimal("0.5")


@dataclass
class AttendanceBasis:
    employee_id: int
    month: int
    year: int
    working_days: int
    present_days: Decimal
    half_days: int
    paid_leave_days: Decimal
    lop_days: Decimal
    payable_days: Decimal
    late_count: int
    total_hours: Decimal
    ot_hours: Decimal = _ZERO
    weekly_offs: List[str] = field(default_factory=list)
    shift_id: Optional[int] = None
    source: str = "computed"  # computed | override:<source>

    @property
    def proration_factor(self) -> Decimal:
        if self.working_days > 0:
            return self.payable_days / Decimal(self.working_days)
        return Decimal("1")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "month": self.month,
            "year": self.year,
            "working_days": self.working_days,
            "present_days": float(self.present_days),
            "half_days": self.half_days,
            "paid_leave_days": float(self.paid_leave_days),
            "lop_days": float(self.lop_days),
            "payable_days": float(self.payable_days),
            "late_count": self.late_count,
            "total_hours": float(self.total_hours),
            "ot_hours": float(self.ot_hours),
            "weekly_offs": list(self.weekly_offs),
            "shift_id": self.shift_id,
            "source": self.source,
        }


def month_bounds(year: int, month: int):
    if not 1 <= int(month) <= 12:
        raise APIError("month must be between 1 and 12", code="INVALID_MONTH", status_code=422)
    last = pycal.monthrange(int(year), int(month))[1]
    return date(int(year), int(month), 1), date(int(year), int(month), last)


def _working_days(organization_id: int, shift, start: date, end: date) -> int:
    shift_id = shift.id if shift is not None else None
    holiday_dates = {
        h.date
        for h in OrgHoliday.query.filter(
            OrgHoliday.organization_id == organization_id,
            OrgHoliday.date >= start,
            OrgHoliday.date <= end,
            OrgHoliday.is_optional.is_(False),
        ).all()
        if h.applies_to(shift_id)
    }
    n = 0
    d = start
    while d <= end:
        if not is_weekly_off(d, shift) and d not in holiday_dates:
            n += 1
        d += timedelta(days=1)
    return n


def resolve_attendance_basis(employee_id: int, month: int, year: int) -> AttendanceBasis:
    """
    Payable-days figure for one employee-month.

    A MonthlyOverride replaces the aggregated counts wholesale. Rows with
    source "ai_suggested" are skipped on purpose: an AI suggestion only counts
    once a reviewer approves it and promote_to_monthly_override rewrites it as
    "ai_approved" (see services/ai_ledger.py).

    With no attendance activity at all (nothing present, half or on paid
    leave, recorded or overridden) the employee is treated as fully present,
    since the organization has not started tracking yet. An override's own
    lop_days is then ignored.
    """
    start, end = month_bounds(year, month)
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise APIError(f"Employee {employee_id} not found", code="EMPLOYEE_NOT_FOUND", status_code=404)

    shift = effective_shift(emp.id, start, end)
    working_days = _working_days(emp.organization_id, shift, start, end)

    present = _ZERO
    half_days = 0
    paid_leave = _ZERO
    late_count = 0
    total_hours = _ZERO

    rows = (
        AttendanceRecord.query
        .filter(AttendanceRecord.employee_id == emp.id)
        .filter(AttendanceRecord.date >= start, AttendanceRecord.date <= end)
        .all()
    )
    for r in rows:
        off_or_absent = r.is_absent or r.is_weekend or r.is_holiday
        if not off_or_absent:
            if r.is_half_day:
                half_days += 1
            else:
                present += 1
        if r.is_holiday or (r.is_absent and r.is_regularized):
            paid_leave += 1
        if r.is_late:
            late_count += 1
        total_hours += Decimal(str(r.effective_hours or 0))

    ot_hours = _ZERO
    source = "computed"

    ovr = (
        MonthlyOverride.query
        .filter_by(employee_id=emp.id, month=int(month), year=int(year))
        .filter(MonthlyOverride.source != "ai_suggested")
        .first()
    )
    if ovr is not None:
        present = Decimal(str(ovr.present_days or 0))
        half_days = int(ovr.half_days or 0)
        paid_leave = Decimal(str(ovr.paid_leave_days or 0))
        late_count = int(ovr.late_count or 0)
        ot_hours = Decimal(str(ovr.ot_hours or 0))
        source = f"override:{ovr.source}"

    if present + half_days + paid_leave > 0:
        lop = max(Decimal(working_days) - present - _HALF * half_days - paid_leave, _ZERO)
    else:
        lop = _ZERO

    payable = max(Decimal(working_days) - lop, _ZERO)

    basis = AttendanceBasis(
        employee_id=emp.id,
        month=int(month),
        year=int(year),
        working_days=working_days,
        present_days=present,
        half_days=half_days,
        paid_leave_days=paid_leave,
        lop_days=lop,
        payable_days=payable,
        late_count=late_count,
        total_hours=total_hours,
        ot_hours=ot_hours,
        weekly_offs=shift.weekly_offs() if shift is not None else list(DEFAULT_WEEKLY_OFFS),
        shift_id=shift.id if shift is not None else None,
        source=source,
    )
    log.debug("[basis] employee=%s %s-%s -> %s", emp.id, month, year, basis.to_dict())
    return basis


# ---------- monthly override layer ----------

_OVERRIDE_FIELDS = (
    "present_days", "half_days", "absent_days", "paid_leave_days",
    "lop_days", "late_count", "ot_hours",
)
# manual outranks anything AI-backed; an AI suggestion never replaces an approval
_OVERRIDE_RANK = {"ai_suggested": 0, "ai_approved": 1, "manual": 2}


def set_monthly_override(
    employee_id: int,
    month: int,
    year: int,
    counts: Dict[str, Any],
    source: str = "manual",
    approved_by: Optional[int] = None,
    reason: Optional[str] = None,
) -> MonthlyOverride:
    """
    Store the complete replacement payload for an employee-month. Every count
    is rewritten: fields missing from `counts` become zero.
    """
    month_bounds(year, month)
    if source not in _OVERRIDE_RANK:
        raise APIError(f"Unsupported override source '{source}'", code="INVALID_OVERRIDE_SOURCE", status_code=422)
    if db.session.get(Employee, employee_id) is None:
        raise APIError(f"Employee {employee_id} not found", code="EMPLOYEE_NOT_FOUND", status_code=404)

    ovr = MonthlyOverride.query.filter_by(employee_id=employee_id, month=int(month), year=int(year)).first()
    if ovr is not None and _OVERRIDE_RANK[source] < _OVERRIDE_RANK.get(ovr.source, 0):
        log.warning(
            "[basis] override for employee=%s %s-%s owned by %s; %s refused",
            employee_id, month, year, ovr.source, source,
        )
        raise OverridePrecedenceError(
            f"A '{ovr.source}' override already exists for {month}-{year}",
            payload={"owner": ovr.source, "incoming": source},
        )
    if ovr is None:
        ovr = MonthlyOverride(employee_id=employee_id, month=int(month), year=int(year))
        db.session.add(ovr)

    for f in _OVERRIDE_FIELDS:
        raw = counts.get(f)
        if f in ("half_days", "late_count"):
            setattr(ovr, f, int(raw or 0))
        else:
            setattr(ovr, f, Decimal(str(raw or 0)))
    ovr.source = source
    ovr.approved_by = approved_by
    ovr.reason = reason

    db.session.commit()
    log.info("[basis] override saved employee=%s %s-%s source=%s", employee_id, month, year, source)
    return ovr


def clear_monthly_override(employee_id: int, month: int, year: int) -> bool:
    n = MonthlyOverride.query.filter_by(employee_id=employee_id, month=int(month), year=int(year)).delete()
    db.session.commit()
    return bool(n)
