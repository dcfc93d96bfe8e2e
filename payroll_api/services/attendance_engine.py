# payroll_api/services/attendance_engine.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, date, time as _time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Iterable, Dict, Any
import logging

from flask import current_app

from payroll_api.extensions import db
from payroll_api.common.errors import AttendanceError, OverridePrecedenceError
from payroll_api.models.master import Employee
from payroll_api.models.attendance import (
    AttendanceRecord,
    EmployeeShift,
    OrgHoliday,
    Shift,
    source_rank,
)

log = logging.getLogger(__name__)

DEFAULT_BREAK_HOURS = Decimal("1.0")
DEFAULT_HALF_DAY_HOURS = Decimal("4.0")
DEFAULT_WEEKLY_OFFS = ("sunday",)
_DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_TWO = Decimal("0.01")

# fields a regularization may set directly
_OVERRIDABLE_FLAGS = (
    "is_absent", "is_regularized", "is_holiday", "is_weekend",
    "is_late", "is_early_leave", "is_half_day",
)
_PUNCH_FIELDS = ("punch_in_time", "punch_out_time")


@dataclass(frozen=True)
class PunchFacts:
    total_hours: Optional[Decimal]
    effective_hours: Optional[Decimal]
    is_late: bool
    is_early_leave: bool
    is_half_day: bool
    is_weekend: bool
    is_holiday: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _minutes(t: _time) -> int:
    return t.hour * 60 + t.minute


def day_name(d: date) -> str:
    return _DAY_NAMES[d.weekday()]


def is_weekly_off(d: date, shift: Optional[Shift]) -> bool:
    offs = shift.weekly_offs() if shift is not None else DEFAULT_WEEKLY_OFFS
    return day_name(d) in offs


def compute_punch_facts(
    punch_in: Optional[datetime],
    punch_out: Optional[datetime],
    work_date: date,
    shift: Optional[Shift] = None,
    holidays: Iterable[OrgHoliday] = (),
) -> PunchFacts:
    """
    Derive hours and the five day flags from scratch.

    Hours, late, early-leave and half-day need both punches; weekend and
    holiday only need the calendar date. Overnight shifts only get an
    early-leave flag when the punch-out lands on the day after the punch-in.
    """
    shift_id = shift.id if shift is not None else None
    is_weekend = is_weekly_off(work_date, shift)
    is_holiday = any(h.date == work_date and h.applies_to(shift_id) for h in holidays)

    if punch_in is None or punch_out is None:
        return PunchFacts(None, None, False, False, False, is_weekend, is_holiday)

    total = Decimal(str((punch_out - punch_in).total_seconds())) / Decimal("3600")
    if shift is not None:
        brk = Decimal(int(shift.break_duration_minutes or 0)) / Decimal("60")
    else:
        brk = DEFAULT_BREAK_HOURS
    effective = max(total - brk, Decimal("0"))

    is_late = False
    is_early = False
    if shift is not None:
        late_thr = int(shift.late_threshold_minutes if shift.late_threshold_minutes is not None else 15)
        early_thr = int(shift.early_out_threshold_minutes if shift.early_out_threshold_minutes is not None else 15)

        is_late = _minutes(punch_in.time()) > _minutes(shift.start_time) + late_thr

        out_before_end = _minutes(punch_out.time()) < _minutes(shift.end_time) - early_thr
        if not shift.crosses_midnight:
            is_early = out_before_end
        elif (punch_out.date() - punch_in.date()).days == 1:
            is_early = out_before_end

        is_half = effective < Decimal(str(shift.duration_hours)) / Decimal("2")
    else:
        is_half = effective < DEFAULT_HALF_DAY_HOURS

    return PunchFacts(
        total_hours=total.quantize(_TWO, rounding=ROUND_HALF_UP),
        effective_hours=effective.quantize(_TWO, rounding=ROUND_HALF_UP),
        is_late=is_late,
        is_early_leave=is_early,
        is_half_day=is_half,
        is_weekend=is_weekend,
        is_holiday=is_holiday,
    )


# ---------- lookups ----------

def effective_shift(employee_id: int, start: date, end: Optional[date] = None) -> Optional[Shift]:
    """Shift assignment overlapping [start, end]; latest effective_from wins."""
    end = end or start
    row = (
        EmployeeShift.query
        .filter(EmployeeShift.employee_id == employee_id)
        .filter(EmployeeShift.effective_from <= end)
        .filter(db.or_(EmployeeShift.effective_to.is_(None), EmployeeShift.effective_to >= start))
        .order_by(EmployeeShift.effective_from.desc(), EmployeeShift.id.desc())
        .first()
    )
    return row.shift if row else None


def holidays_on(organization_id: int, on_date: date) -> List[OrgHoliday]:
    return (
        OrgHoliday.query
        .filter(OrgHoliday.organization_id == organization_id, OrgHoliday.date == on_date)
        .filter(OrgHoliday.is_optional.is_(False))
        .all()
    )


# ---------- write path ----------

def recompute_record(rec: AttendanceRecord) -> AttendanceRecord:
    """Refresh every derived column of `rec`. Caller commits."""
    shift = db.session.get(Shift, rec.shift_id) if rec.shift_id else None
    facts = compute_punch_facts(
        rec.punch_in_time,
        rec.punch_out_time,
        rec.date,
        shift,
        holidays_on(rec.organization_id, rec.date),
    )
    rec.total_hours = facts.total_hours
    rec.effective_hours = facts.effective_hours
    rec.is_late = facts.is_late
    rec.is_early_leave = facts.is_early_leave
    rec.is_half_day = facts.is_half_day
    rec.is_weekend = facts.is_weekend
    rec.is_holiday = facts.is_holiday
    if rec.punch_in_time is not None and rec.punch_out_time is not None:
        rec.is_absent = False  # they showed up
    return rec


def _employee_or_error(employee_id: int) -> Employee:
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise AttendanceError(f"Employee {employee_id} not found", status_code=404)
    return emp


def record_punch_in(
    employee_id: int,
    at: datetime,
    latitude=None,
    longitude=None,
    distance_m=None,
    source: str = "default",
) -> AttendanceRecord:
    emp = _employee_or_error(employee_id)
    work_date = at.date()

    rec = AttendanceRecord.query.filter_by(employee_id=emp.id, date=work_date).first()
    if rec is not None and rec.punch_in_time is not None:
        raise AttendanceError(f"Employee {emp.id} already punched in on {work_date.isoformat()}")

    shift = effective_shift(emp.id, work_date)
    if rec is None:
        rec = AttendanceRecord(
            organization_id=emp.organization_id,
            employee_id=emp.id,
            date=work_date,
            source=source,
        )
        db.session.add(rec)

    rec.shift_id = shift.id if shift else None
    rec.punch_in_time = at
    rec.is_absent = False
    if latitude is not None:
        rec.latitude = Decimal(str(latitude))
    if longitude is not None:
        rec.longitude = Decimal(str(longitude))
    if distance_m is not None:
        rec.distance_m = Decimal(str(distance_m))

    recompute_record(rec)
    db.session.commit()
    log.info("[attendance] punch-in employee=%s date=%s", emp.id, work_date)
    return rec


def record_punch_out(employee_id: int, at: datetime) -> AttendanceRecord:
    """
    Close the open record for `employee_id`. An overnight session opened on
    the previous calendar day is closed too.
    """
    emp = _employee_or_error(employee_id)
    rec = (
        AttendanceRecord.query
        .filter(AttendanceRecord.employee_id == emp.id)
        .filter(AttendanceRecord.date.in_([at.date(), at.date() - timedelta(days=1)]))
        .filter(AttendanceRecord.punch_in_time.isnot(None))
        .filter(AttendanceRecord.punch_out_time.is_(None))
        .order_by(AttendanceRecord.date.desc())
        .first()
    )
    if rec is None:
        raise AttendanceError(f"No open punch-in for employee {emp.id}")
    if at <= rec.punch_in_time:
        raise AttendanceError("punch_out must be after punch_in")

    rec.punch_out_time = at
    recompute_record(rec)
    db.session.commit()
    log.info("[attendance] punch-out employee=%s date=%s hours=%s", emp.id, rec.date, rec.effective_hours)
    return rec


def apply_attendance_override(
    rec: AttendanceRecord,
    changes: Dict[str, Any],
    source: str = "manual",
    commit: bool = True,
) -> AttendanceRecord:
    """
    Regularize a record. Punch-time changes trigger a full recompute; flags
    given explicitly are applied on top of it. A source ranked below the
    record's current owner is refused.
    """
    source = (source or "manual").lower()
    if source_rank(source) < source_rank(rec.source):
        log.info(
            "[attendance] override refused record=%s owner=%s incoming=%s", rec.id, rec.source, source
        )
        raise OverridePrecedenceError(
            f"Record {rec.id} is owned by '{rec.source}', '{source}' cannot override it",
            payload={"owner": rec.source, "incoming": source},
        )

    unknown = set(changes) - set(_OVERRIDABLE_FLAGS) - set(_PUNCH_FIELDS)
    if unknown:
        raise AttendanceError(f"Unsupported attendance fields: {', '.join(sorted(unknown))}")

    if any(f in changes for f in _PUNCH_FIELDS):
        for f in _PUNCH_FIELDS:
            if f in changes:
                setattr(rec, f, changes[f])
        if rec.punch_in_time and rec.punch_out_time and rec.punch_out_time <= rec.punch_in_time:
            raise AttendanceError("punch_out must be after punch_in")
        recompute_record(rec)

    for f in _OVERRIDABLE_FLAGS:
        if f in changes:
            setattr(rec, f, bool(changes[f]))

    rec.source = source
    if commit:
        db.session.commit()
    return rec


def populate_absent_records(organization_id: int, on_date: date) -> int:
    """
    Insert placeholder rows for employees with a shift on `on_date` and no
    attendance yet. Working days become absences; weekly offs and holidays
    are flagged but not absent.
    """
    assignments = (
        EmployeeShift.query
        .join(Shift, Shift.id == EmployeeShift.shift_id)
        .filter(Shift.organization_id == organization_id)
        .filter(EmployeeShift.effective_from <= on_date)
        .filter(db.or_(EmployeeShift.effective_to.is_(None), EmployeeShift.effective_to >= on_date))
        .order_by(EmployeeShift.employee_id.asc(), EmployeeShift.effective_from.desc())
        .all()
    )
    existing = {
        r.employee_id
        for r in AttendanceRecord.query.filter(
            AttendanceRecord.organization_id == organization_id, AttendanceRecord.date == on_date
        ).all()
    }
    holidays = holidays_on(organization_id, on_date)

    inserted = 0
    seen = set()
    for a in assignments:
        if a.employee_id in seen or a.employee_id in existing:
            continue
        seen.add(a.employee_id)
        facts = compute_punch_facts(None, None, on_date, a.shift, holidays)
        db.session.add(AttendanceRecord(
            organization_id=organization_id,
            employee_id=a.employee_id,
            date=on_date,
            shift_id=a.shift_id,
            is_weekend=facts.is_weekend,
            is_holiday=facts.is_holiday,
            is_absent=not (facts.is_weekend or facts.is_holiday),
        ))
        inserted += 1

    db.session.commit()
    log.info("[attendance] populate-absent org=%s date=%s inserted=%s", organization_id, on_date, inserted)
    return inserted


def cleanup_open_overnight_records(
    employee_ids: Iterable[int],
    shift_id: int,
    max_open_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Delete stale open punch-ins on an overnight shift whose punch-in falls in
    the daytime gap between shift end and shift start. Sessions younger than
    `max_open_hours` are kept.
    """
    if max_open_hours is None:
        max_open_hours = int(current_app.config.get("ATTENDANCE_OPEN_SESSION_MAX_HOURS", 16))
    now = now or datetime.utcnow()

    shift = db.session.get(Shift, shift_id)
    if shift is None or not shift.crosses_midnight:
        return []

    ids = list({int(e) for e in employee_ids})
    if not ids:
        return []

    candidates = (
        AttendanceRecord.query
        .filter(AttendanceRecord.employee_id.in_(ids))
        .filter(AttendanceRecord.shift_id == shift.id)
        .filter(AttendanceRecord.punch_in_time.isnot(None))
        .filter(AttendanceRecord.punch_out_time.is_(None))
        .all()
    )

    removed: List[Dict[str, Any]] = []
    for rec in candidates:
        t = rec.punch_in_time.time()
        if not (shift.end_time <= t < shift.start_time):
            continue
        if now - rec.punch_in_time < timedelta(hours=max_open_hours):
            continue
        removed.append({
            "attendance_id": rec.id,
            "employee_id": rec.employee_id,
            "attendance_date": rec.date.isoformat(),
            "punch_in_time": rec.punch_in_time.isoformat(),
            "action_taken": "deleted_stale_invalid_open_overnight",
        })
        db.session.delete(rec)

    db.session.commit()
    if removed:
        log.info("[attendance] removed %s stale overnight sessions on shift=%s", len(removed), shift.id)
    return removed
