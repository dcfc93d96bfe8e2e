from flask import Blueprint, request

from payroll_api.common.errors import APIError
from payroll_api.common.http import ok
from payroll_api.common.parsing import as_int, parse_date
from payroll_api.services.attendance_basis import resolve_attendance_basis
from payroll_api.services.compensation import eval_components, get_active_compensation, save_compensation

bp = Blueprint("compensation", __name__, url_prefix="/api/v1/compensation")


def _plan_dict(rec, components):
    return {
        "id": rec.id,
        "employee_id": rec.employee_id,
        "effective_from": rec.effective_from.isoformat(),
        "effective_to": rec.effective_to.isoformat() if rec.effective_to else None,
        "ctc_annual": float(rec.ctc_annual or 0),
        "pay_schedule": rec.pay_schedule,
        "currency": rec.currency,
        "components": components,
    }


def _emp_month_year():
    return (
        as_int(request.args.get("employee_id"), "employee_id", required=True),
        as_int(request.args.get("month"), "month", required=True),
        as_int(request.args.get("year"), "year", required=True),
    )


@bp.post("")
def create():
    b = request.get_json(silent=True) or {}
    eff = parse_date(b.get("effective_from"), "effective_from")
    if eff is None:
        raise APIError("effective_from is required", code="VALIDATION_ERROR", status_code=422)
    comps = b.get("components")
    rec = save_compensation(
        as_int(b.get("employee_id"), "employee_id", required=True),
        eff,
        comps if comps is not None else [],
        ctc_annual=b.get("ctc_annual"),
        effective_to=parse_date(b.get("effective_to"), "effective_to"),
        pay_schedule=b.get("pay_schedule") or "monthly",
        currency=b.get("currency") or "INR",
        created_by=as_int(b.get("created_by"), "created_by"),
        notes=b.get("notes"),
    )
    return ok(_plan_dict(rec, rec.compensation_payload.get("components")), status=201)


@bp.get("/effective")
def effective():
    emp_id, month, year = _emp_month_year()
    active = get_active_compensation(emp_id, month, year)
    return ok(_plan_dict(active.record, active.components))


@bp.get("/evaluate")
def evaluate():
    emp_id, month, year = _emp_month_year()
    basis = resolve_attendance_basis(emp_id, month, year)
    rows = eval_components(emp_id, month, year, basis=basis)
    data = [
        {k: (float(v) if k.endswith("amount") else v) for k, v in r.items()}
        for r in rows
    ]
    return ok(data, proration_factor=float(basis.proration_factor))
