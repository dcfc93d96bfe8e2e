from flask import Blueprint, current_app, request

from payroll_api.common.errors import APIError
from payroll_api.common.http import ok
from payroll_api.common.parsing import as_int
from payroll_api.services import payroll_run
from payroll_api.services.compliance import calculate_pt, normalize_state

bp = Blueprint("payroll", __name__, url_prefix="/api/v1/payroll")


def _body():
    return request.get_json(silent=True) or {}


# ---------- periods ----------

@bp.post("/periods")
def bootstrap():
    b = _body()
    p = payroll_run.bootstrap_period(
        as_int(b.get("organization_id"), "organization_id", required=True),
        as_int(b.get("month"), "month", required=True),
        as_int(b.get("year"), "year", required=True),
        created_by=as_int(b.get("created_by"), "created_by"),
    )
    return ok(p.to_dict(), status=201)


@bp.get("/periods/<int:period_id>")
def get_period(period_id: int):
    return ok(payroll_run.get_period(period_id).to_dict())


@bp.post("/periods/<int:period_id>/lock")
def lock(period_id: int):
    p = payroll_run.lock_period(period_id, user_id=as_int(_body().get("user_id"), "user_id"))
    return ok(p.to_dict())


@bp.post("/periods/<int:period_id>/close")
def close(period_id: int):
    p = payroll_run.close_period(period_id, user_id=as_int(_body().get("user_id"), "user_id"))
    return ok(p.to_dict())


# ---------- runs ----------

@bp.post("/periods/<int:period_id>/runs/<int:employee_id>")
def finalize_one(period_id: int, employee_id: int):
    run = payroll_run.finalize_run(period_id, employee_id, state=_body().get("state"))
    return ok(run.to_dict(), status=201)


@bp.post("/periods/<int:period_id>/finalize")
def finalize_batch(period_id: int):
    b = _body()
    ids = b.get("employee_ids")
    if ids is not None and not isinstance(ids, list):
        raise APIError("employee_ids must be a list", code="VALIDATION_ERROR", status_code=422)
    out = payroll_run.finalize_period_runs(period_id, state=b.get("state"), employee_ids=ids)
    return ok(out)


@bp.get("/periods/<int:period_id>/runs")
def list_runs(period_id: int):
    rows = payroll_run.list_runs(period_id)
    return ok([r.to_dict() for r in rows], count=len(rows))


@bp.get("/periods/<int:period_id>/runs/<int:employee_id>")
def get_run(period_id: int, employee_id: int):
    return ok(payroll_run.get_run(period_id, employee_id).to_dict())


@bp.get("/preview")
def preview():
    data = payroll_run.preview_run(
        as_int(request.args.get("employee_id"), "employee_id", required=True),
        as_int(request.args.get("month"), "month", required=True),
        as_int(request.args.get("year"), "year", required=True),
        state=request.args.get("state"),
    )
    return ok(data)


@bp.get("/pt")
def pt():
    gross = request.args.get("gross")
    if gross in (None, ""):
        raise APIError("gross is required", code="VALIDATION_ERROR", status_code=422)
    try:
        gross_val = float(gross)
    except ValueError:
        raise APIError("gross must be numeric", code="VALIDATION_ERROR", status_code=422)
    state = request.args.get("state") or current_app.config.get("PAYROLL_DEFAULT_STATE", "GJ")
    return ok({"state": normalize_state(state), "gross": gross_val, "pt_amount": float(calculate_pt(gross, state))})
