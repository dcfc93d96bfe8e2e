from flask import Blueprint, request

from payroll_api.common.errors import APIError
from payroll_api.common.http import ok
from payroll_api.common.parsing import as_bool, as_int, parse_date
from payroll_api.services import ai_ledger

bp = Blueprint("ai_attendance", __name__, url_prefix="/api/v1/ai-attendance")


def _body():
    return request.get_json(silent=True) or {}


# ---------- policies ----------

@bp.post("/policies")
def create_policy():
    b = _body()
    if not b.get("policy_name") or not b.get("instruction_text"):
        raise APIError("policy_name and instruction_text are required", code="VALIDATION_ERROR", status_code=422)
    p = ai_ledger.create_policy(
        as_int(b.get("organization_id"), "organization_id", required=True),
        b["policy_name"],
        b["instruction_text"],
        instruction_json=b.get("instruction_json"),
        model_name=b.get("model_name"),
        confidence_score=b.get("confidence_score"),
        created_by=as_int(b.get("created_by"), "created_by"),
    )
    return ok(p.to_dict(), status=201)


@bp.get("/policies/active")
def active_policy():
    org_id = as_int(request.args.get("organization_id"), "organization_id", required=True)
    p = ai_ledger.get_active_policy(org_id)
    return ok(p.to_dict() if p else None)


@bp.post("/policies/<int:policy_id>/approve")
def approve_policy(policy_id: int):
    p = ai_ledger.approve_policy(policy_id, approved_by=as_int(_body().get("approved_by"), "approved_by"))
    return ok(p.to_dict())


@bp.post("/policies/<int:policy_id>/activate")
def activate_policy(policy_id: int):
    return ok(ai_ledger.activate_policy(policy_id).to_dict())


@bp.post("/policies/<int:policy_id>/retire")
def retire_policy(policy_id: int):
    return ok(ai_ledger.retire_policy(policy_id).to_dict())


# ---------- runs ----------

@bp.post("/runs")
def start_run():
    b = _body()
    run = ai_ledger.start_run(
        as_int(b.get("organization_id"), "organization_id", required=True),
        b.get("run_type") or "weekly_hydration",
        period_start=parse_date(b.get("period_start"), "period_start"),
        period_end=parse_date(b.get("period_end"), "period_end"),
        input_snapshot=b.get("input_snapshot"),
    )
    return ok(run.to_dict(), status=201)


@bp.post("/runs/<int:run_id>/complete")
def complete_run(run_id: int):
    return ok(ai_ledger.complete_run(run_id, _body().get("output_summary")).to_dict())


@bp.post("/runs/<int:run_id>/fail")
def fail_run(run_id: int):
    return ok(ai_ledger.fail_run(run_id, _body().get("error_message") or "unspecified").to_dict())


@bp.post("/runs/<int:run_id>/decisions")
def record_decision(run_id: int):
    b = _body()
    d = ai_ledger.record_decision(
        run_id,
        b.get("decision_type"),
        b.get("decision_payload") or {},
        employee_id=as_int(b.get("employee_id"), "employee_id"),
        attendance_id=as_int(b.get("attendance_id"), "attendance_id"),
        confidence=b.get("confidence"),
        human_review_required=as_bool(b.get("human_review_required")),
        source_priority=b.get("source_priority") or "ai",
    )
    return ok(d.to_dict(), status=201)


# ---------- review ----------

@bp.get("/review-queue")
def review_queue():
    org_id = as_int(request.args.get("organization_id"), "organization_id")
    rows = ai_ledger.review_queue(org_id)
    return ok([d.to_dict() for d in rows], count=len(rows))


@bp.post("/decisions/<int:decision_id>/review")
def review(decision_id: int):
    b = _body()
    d = ai_ledger.review_decision(
        decision_id,
        as_int(b.get("reviewer_id"), "reviewer_id", required=True),
        as_bool(b.get("approve")),
    )
    return ok(d.to_dict())


@bp.post("/decisions/<int:decision_id>/apply")
def apply(decision_id: int):
    return ok(ai_ledger.apply_approved_decision(decision_id).to_dict())


@bp.post("/decisions/<int:decision_id>/promote")
def promote(decision_id: int):
    ovr = ai_ledger.promote_to_monthly_override(
        decision_id, approver_id=as_int(_body().get("approver_id"), "approver_id")
    )
    return ok(ovr.to_dict())
