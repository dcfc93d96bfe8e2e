from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest

from payroll_api.common.errors import AttendanceError, OverridePrecedenceError
from payroll_api.models.attendance import AttendanceRecord, OrgHoliday, Shift
from payroll_api.services.attendance_engine import (
    apply_attendance_override,
    cleanup_open_overnight_records,
    compute_punch_facts,
    populate_absent_records,
    record_punch_in,
    record_punch_out,
)

MONDAY = date(2025, 4, 7)
SUNDAY = date(2025, 4, 6)


def _day_shift(**kw):
    base = dict(
        id=1, start_time=time(9, 0), end_time=time(18, 0), break_duration_minutes=60,
        late_threshold_minutes=15, early_out_threshold_minutes=15, duration_hours=Decimal("9"),
        is_overnight=False, weekly_off_days=["sunday"],
    )
    base.update(kw)
    return Shift(**base)


def _night_shift():
    return _day_shift(id=2, start_time=time(22, 0), end_time=time(6, 0), duration_hours=Decimal("8"), is_overnight=True)


def _at(d, hh, mm=0):
    return datetime.combine(d, time(hh, mm))


# ---------- pure punch computation ----------

def test_hours_and_on_time_day():
    f = compute_punch_facts(_at(MONDAY, 9, 10), _at(MONDAY, 18, 0), MONDAY, _day_shift())
    assert f.total_hours == Decimal("8.83")
    assert f.effective_hours == Decimal("7.83")
    assert not f.is_late
    assert not f.is_early_leave
    assert not f.is_half_day
    assert not f.is_weekend


def test_late_threshold_is_exclusive():
    shift = _day_shift()
    assert not compute_punch_facts(_at(MONDAY, 9, 15), _at(MONDAY, 18), MONDAY, shift).is_late
    assert compute_punch_facts(_at(MONDAY, 9, 16), _at(MONDAY, 18), MONDAY, shift).is_late


def test_early_leave():
    shift = _day_shift()
    assert compute_punch_facts(_at(MONDAY, 9), _at(MONDAY, 17, 40), MONDAY, shift).is_early_leave
    assert not compute_punch_facts(_at(MONDAY, 9), _at(MONDAY, 17, 50), MONDAY, shift).is_early_leave


def test_half_day_against_shift_duration():
    f = compute_punch_facts(_at(MONDAY, 9), _at(MONDAY, 12), MONDAY, _day_shift())
    assert f.effective_hours == Decimal("2.00")
    assert f.is_half_day


def test_without_shift_uses_defaults():
    f = compute_punch_facts(_at(MONDAY, 9), _at(MONDAY, 14, 30), MONDAY, None)
    assert f.effective_hours == Decimal("4.50")
    assert not f.is_half_day
    assert not f.is_late
    assert compute_punch_facts(None, None, SUNDAY, None).is_weekend


def test_effective_hours_floor_at_zero():
    f = compute_punch_facts(_at(MONDAY, 9), _at(MONDAY, 9, 30), MONDAY, _day_shift())
    assert f.effective_hours == Decimal("0.00")


def test_overnight_early_leave_only_next_day():
    shift = _night_shift()
    next_day = compute_punch_facts(_at(MONDAY, 22), _at(MONDAY + timedelta(days=1), 5, 30), MONDAY, shift)
    assert next_day.is_early_leave
    same_day = compute_punch_facts(_at(MONDAY, 22), _at(MONDAY, 23, 30), MONDAY, shift)
    assert not same_day.is_early_leave


def test_weekend_and_scoped_holidays():
    shift = _day_shift()
    assert compute_punch_facts(None, None, SUNDAY, shift).is_weekend

    everyone = OrgHoliday(date=MONDAY, name="Founders Day", applies_to_shifts=None)
    other_shift = OrgHoliday(date=MONDAY, name="Night crew off", applies_to_shifts=[99])
    assert compute_punch_facts(None, None, MONDAY, shift, [everyone]).is_holiday
    assert not compute_punch_facts(None, None, MONDAY, shift, [other_shift]).is_holiday


# ---------- write path ----------

def test_punch_in_then_out(session, seed):
    org = seed.org()
    emp = seed.employee(org)
    shift = seed.assign(emp, seed.shift(org)).shift

    rec = record_punch_in(emp.id, _at(MONDAY, 9, 30), latitude=23.02, longitude=72.57, distance_m=12.5)
    assert rec.shift_id == shift.id

    with pytest.raises(AttendanceError):
        record_punch_in(emp.id, _at(MONDAY, 10))

    rec = record_punch_out(emp.id, _at(MONDAY, 18, 30))
    assert rec.effective_hours == Decimal("8.00")
    assert rec.is_late
    assert not rec.is_absent
    assert not rec.is_early_leave


def test_punch_out_without_open_session(session, seed):
    emp = seed.employee(seed.org())
    with pytest.raises(AttendanceError):
        record_punch_out(emp.id, _at(MONDAY, 18))


def test_overnight_punch_out_closes_previous_day(session, seed):
    org = seed.org()
    emp = seed.employee(org)
    seed.assign(emp, seed.shift(org, name="Night", start=time(22, 0), end=time(6, 0), duration=8, overnight=True))

    record_punch_in(emp.id, _at(MONDAY, 22))
    rec = record_punch_out(emp.id, _at(MONDAY + timedelta(days=1), 6, 0))
    assert rec.date == MONDAY
    assert rec.total_hours == Decimal("8.00")
    assert not rec.is_early_leave


def test_override_respects_source_priority(session, seed):
    org = seed.org()
    emp = seed.employee(org)
    rec = AttendanceRecord(organization_id=org.id, employee_id=emp.id, date=MONDAY, is_absent=True, source="manual")
    session.add(rec)
    session.flush()

    with pytest.raises(OverridePrecedenceError):
        apply_attendance_override(rec, {"is_absent": False}, source="ai")

    rec = apply_attendance_override(rec, {"is_regularized": True}, source="compliance")
    assert rec.is_regularized
    assert rec.source == "compliance"


def test_override_punch_change_recomputes(session, seed):
    org = seed.org()
    emp = seed.employee(org)
    shift = seed.shift(org)
    rec = AttendanceRecord(organization_id=org.id, employee_id=emp.id, date=MONDAY, shift_id=shift.id,
                           punch_in_time=_at(MONDAY, 9, 45), punch_out_time=_at(MONDAY, 18))
    session.add(rec)
    session.flush()

    rec = apply_attendance_override(rec, {"punch_in_time": _at(MONDAY, 9, 0)})
    assert not rec.is_late
    assert rec.effective_hours == Decimal("8.00")

    with pytest.raises(AttendanceError):
        apply_attendance_override(rec, {"overtime": 3})


def test_populate_absent_records(session, seed):
    org = seed.org()
    shift = seed.shift(org)
    present = seed.employee(org, "E001")
    missing = seed.employee(org, "E002")
    seed.assign(present, shift)
    seed.assign(missing, shift)
    record_punch_in(present.id, _at(MONDAY, 9))

    assert populate_absent_records(org.id, MONDAY) == 1
    row = AttendanceRecord.query.filter_by(employee_id=missing.id, date=MONDAY).one()
    assert row.is_absent
    assert populate_absent_records(org.id, MONDAY) == 0

    # weekly off: placeholder, not absent
    populate_absent_records(org.id, SUNDAY)
    off = AttendanceRecord.query.filter_by(employee_id=missing.id, date=SUNDAY).one()
    assert off.is_weekend
    assert not off.is_absent


def test_cleanup_open_overnight_records(session, seed):
    org = seed.org()
    night = seed.shift(org, name="Night", start=time(22, 0), end=time(6, 0), duration=8, overnight=True)
    stale_emp = seed.employee(org, "E001")
    valid_emp = seed.employee(org, "E002")
    fresh_emp = seed.employee(org, "E003")

    def _open(emp, at):
        r = AttendanceRecord(organization_id=org.id, employee_id=emp.id, date=at.date(),
                             shift_id=night.id, punch_in_time=at)
        session.add(r)
        return r

    _open(stale_emp, _at(MONDAY, 10))                        # daytime gap, a day old
    _open(valid_emp, _at(MONDAY, 23))                        # inside the shift window
    _open(fresh_emp, _at(MONDAY + timedelta(days=1), 9))     # daytime gap, one hour old
    session.flush()

    removed = cleanup_open_overnight_records(
        [stale_emp.id, valid_emp.id, fresh_emp.id], night.id, now=_at(MONDAY + timedelta(days=1), 10)
    )
    assert [r["employee_id"] for r in removed] == [stale_emp.id]
    assert removed[0]["action_taken"] == "deleted_stale_invalid_open_overnight"
    assert AttendanceRecord.query.count() == 2
