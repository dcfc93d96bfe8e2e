from __future__ import annotations

from flask import Blueprint, request

from payroll_api.extensions import db
from payroll_api.common.errors import APIError
from payroll_api.common.http import ok
from payroll_api.common.parsing import as_int, parse_date, parse_ts
from payroll_api.models.attendance import AttendanceRecord
from payroll_api.services import attendance_engine as engine
from payroll_api.services.attendance_basis import (
    clear_monthly_override,
    resolve_attendance_basis,
    set_monthly_override,
)

bp = Blueprint("attendance", __name__, url_prefix="/api/v1/attendance")


def _body():
    return request.get_json(silent=True) or {}


@bp.post("/punch-in")
def punch_in():
    b = _body()
    rec = engine.record_punch_in(
        as_int(b.get("employee_id"), "employee_id", required=True),
        parse_ts(b.get("at"), "at") or _required("at"),
        latitude=b.get("latitude"),
        longitude=b.get("longitude"),
        distance_m=b.get("distance_m"),
    )
    return ok(rec.to_dict(), status=201)


@bp.post("/punch-out")
def punch_out():
    b = _body()
    rec = engine.record_punch_out(
        as_int(b.get("employee_id"), "employee_id", required=True),
        parse_ts(b.get("at"), "at") or _required("at"),
    )
    return ok(rec.to_dict())


@bp.get("/records")
def list_records():
    emp_id = as_int(request.args.get("employee_id"), "employee_id", required=True)
    q = AttendanceRecord.query.filter(AttendanceRecord.employee_id == emp_id)
    start = parse_date(request.args.get("from"), "from")
    end = parse_date(request.args.get("to"), "to")
    if start:
        q = q.filter(AttendanceRecord.date >= start)
    if end:
        q = q.filter(AttendanceRecord.date <= end)
    rows = q.order_by(AttendanceRecord.date.asc()).all()
    return ok([r.to_dict() for r in rows], count=len(rows))


@bp.patch("/records/<int:record_id>")
def regularize(record_id: int):
    rec = db.session.get(AttendanceRecord, record_id)
    if rec is None:
        raise APIError(f"Attendance {record_id} not found", code="ATTENDANCE_NOT_FOUND", status_code=404)
    b = dict(_body())
    source = b.pop("source", "manual")
    for f in ("punch_in_time", "punch_out_time"):
        if f in b:
            b[f] = parse_ts(b[f], f)
    rec = engine.apply_attendance_override(rec, b, source=source)
    return ok(rec.to_dict())


@bp.get("/basis")
def basis():
    emp_id = as_int(request.args.get("employee_id"), "employee_id", required=True)
    month = as_int(request.args.get("month"), "month", required=True)
    year = as_int(request.args.get("year"), "year", required=True)
    return ok(resolve_attendance_basis(emp_id, month, year).to_dict())


@bp.put("/monthly-overrides")
def put_monthly_override():
    b = _body()
    ovr = set_monthly_override(
        as_int(b.get("employee_id"), "employee_id", required=True),
        as_int(b.get("month"), "month", required=True),
        as_int(b.get("year"), "year", required=True),
        b.get("counts") or {},
        source=b.get("source") or "manual",
        approved_by=as_int(b.get("approved_by"), "approved_by"),
        reason=b.get("reason"),
    )
    return ok(ovr.to_dict())


@bp.delete("/monthly-overrides")
def delete_monthly_override():
    removed = clear_monthly_override(
        as_int(request.args.get("employee_id"), "employee_id", required=True),
        as_int(request.args.get("month"), "month", required=True),
        as_int(request.args.get("year"), "year", required=True),
    )
    return ok({"removed": removed})


@bp.post("/populate-absent")
def populate_absent():
    b = _body()
    n = engine.populate_absent_records(
        as_int(b.get("organization_id"), "organization_id", required=True),
        parse_date(b.get("date")) or _required("date"),
    )
    return ok({"inserted": n})


@bp.post("/cleanup-overnight")
def cleanup_overnight():
    b = _body()
    removed = engine.cleanup_open_overnight_records(
        b.get("employee_ids") or [],
        as_int(b.get("shift_id"), "shift_id", required=True),
        max_open_hours=as_int(b.get("max_open_hours"), "max_open_hours"),
    )
    return ok(removed, count=len(removed))


def _required(field):
    raise APIError(f"{field} is required", code="VALIDATION_ERROR", status_code=422)
