# payroll_api/services/ai_ledger.py
"""
Policy, run and decision bookkeeping for AI-assisted attendance.

Nothing here talks to a model. An external hydration worker starts a run
against the organization's active policy, records decisions, and humans work
the review queue. Approved decisions flow back into attendance through the
same priority rules as any other source.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app

from payroll_api.extensions import db
from payroll_api.common.errors import (
    APIError,
    InvalidPolicyStateError,
    InvalidRunStateError,
    NoActivePolicyError,
    OverridePrecedenceError,
)
from payroll_api.models.ai import AIDecision, AIPolicy, AIRun, DECISION_TYPES, RUN_TYPES
from payroll_api.models.attendance import AttendanceRecord, MonthlyOverride, SOURCE_PRIORITY
from payroll_api.services.attendance_basis import set_monthly_override
from payroll_api.services.attendance_engine import apply_attendance_override

log = logging.getLogger(__name__)

# decision type -> attendance fields its payload may set
_ATTENDANCE_FIELDS = {
    "late_flag": ("is_late",),
    "holiday_flag": ("is_holiday",),
    "attendance_status": ("is_absent", "is_half_day", "is_early_leave", "is_weekend", "is_regularized"),
}


def _policy_or_404(policy_id: int) -> AIPolicy:
    p = db.session.get(AIPolicy, policy_id)
    if p is None:
        raise APIError(f"Policy {policy_id} not found", code="POLICY_NOT_FOUND", status_code=404)
    return p


def _run_or_404(run_id: int) -> AIRun:
    r = db.session.get(AIRun, run_id)
    if r is None:
        raise APIError(f"Run {run_id} not found", code="RUN_NOT_FOUND", status_code=404)
    return r


def _decision_or_404(decision_id: int) -> AIDecision:
    d = db.session.get(AIDecision, decision_id)
    if d is None:
        raise APIError(f"Decision {decision_id} not found", code="DECISION_NOT_FOUND", status_code=404)
    return d


# ---------- policies ----------

def create_policy(
    organization_id: int,
    policy_name: str,
    instruction_text: str,
    instruction_json: Optional[Dict[str, Any]] = None,
    model_name: Optional[str] = None,
    confidence_score=None,
    created_by: Optional[int] = None,
) -> AIPolicy:
    latest = (
        AIPolicy.query
        .filter_by(organization_id=organization_id, policy_name=policy_name)
        .order_by(AIPolicy.policy_version.desc())
        .first()
    )
    p = AIPolicy(
        organization_id=organization_id,
        policy_name=policy_name,
        policy_version=(latest.policy_version + 1) if latest else 1,
        status="draft",
        instruction_text=instruction_text,
        instruction_json=instruction_json or {},
        model_name=model_name or "gemini-2.5-flash",
        confidence_score=Decimal(str(confidence_score)) if confidence_score is not None else None,
        created_by=created_by,
    )
    db.session.add(p)
    db.session.commit()
    log.info("[ai] policy created id=%s org=%s %s v%s", p.id, organization_id, policy_name, p.policy_version)
    return p


def approve_policy(policy_id: int, approved_by: Optional[int] = None) -> AIPolicy:
    p = _policy_or_404(policy_id)
    if p.status != "draft":
        raise InvalidPolicyStateError(f"Policy {p.id} is '{p.status}', only drafts can be approved")
    p.status = "approved"
    p.approved_by = approved_by
    p.approved_at = datetime.utcnow()
    db.session.commit()
    return p


def get_active_policy(organization_id: int) -> Optional[AIPolicy]:
    return AIPolicy.query.filter_by(organization_id=organization_id, status="active").first()


def activate_policy(policy_id: int) -> AIPolicy:
    """Make an approved policy the organization's only active one."""
    p = _policy_or_404(policy_id)
    if p.status == "active":
        return p
    if p.status != "approved":
        raise InvalidPolicyStateError(f"Policy {p.id} is '{p.status}', only approved policies can be activated")

    current = get_active_policy(p.organization_id)
    if current is not None:
        current.status = "retired"
        # the one-active index is checked per statement
        db.session.flush()
        log.info("[ai] policy retired id=%s org=%s", current.id, p.organization_id)

    p.status = "active"
    db.session.commit()
    log.info("[ai] policy activated id=%s org=%s", p.id, p.organization_id)
    return p


def retire_policy(policy_id: int) -> AIPolicy:
    p = _policy_or_404(policy_id)
    if p.status == "retired":
        return p
    p.status = "retired"
    db.session.commit()
    log.info("[ai] policy retired id=%s org=%s", p.id, p.organization_id)
    return p


# ---------- runs ----------

def start_run(
    organization_id: int,
    run_type: str,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    input_snapshot: Optional[Dict[str, Any]] = None,
) -> AIRun:
    if run_type not in RUN_TYPES:
        raise APIError(f"Unsupported run_type '{run_type}'", code="INVALID_RUN_TYPE", status_code=422)
    if period_start and period_end and period_end < period_start:
        raise APIError("period_end must be on or after period_start", code="INVALID_RANGE", status_code=422)

    policy = get_active_policy(organization_id)
    if policy is None:
        raise NoActivePolicyError(f"Organization {organization_id} has no active AI policy")

    run = AIRun(
        organization_id=organization_id,
        policy_id=policy.id,
        run_type=run_type,
        period_start=period_start,
        period_end=period_end,
        input_snapshot=input_snapshot or {},
        status="running",
    )
    db.session.add(run)
    db.session.commit()
    log.info("[ai] run started id=%s org=%s type=%s policy=%s", run.id, organization_id, run_type, policy.id)
    return run


def _finish(run_id: int, status: str, output_summary=None, error_message=None) -> AIRun:
    run = _run_or_404(run_id)
    if run.status != "running":
        raise InvalidRunStateError(f"Run {run.id} is already '{run.status}'")
    run.status = status
    if output_summary is not None:
        run.output_summary = output_summary
    run.error_message = error_message
    run.completed_at = datetime.utcnow()
    db.session.commit()
    return run


def complete_run(run_id: int, output_summary: Optional[Dict[str, Any]] = None) -> AIRun:
    run = _finish(run_id, "completed", output_summary=output_summary or {})
    log.info("[ai] run completed id=%s", run.id)
    return run


def fail_run(run_id: int, error_message: str) -> AIRun:
    run = _finish(run_id, "failed", error_message=error_message)
    log.warning("[ai] run failed id=%s: %s", run.id, error_message)
    return run


# ---------- decisions ----------

def _review_threshold() -> Decimal:
    return Decimal(str(current_app.config.get("AI_REVIEW_CONFIDENCE_THRESHOLD", 0.80)))


def record_decision(
    run_id: int,
    decision_type: str,
    decision_payload: Dict[str, Any],
    employee_id: Optional[int] = None,
    attendance_id: Optional[int] = None,
    confidence=None,
    human_review_required: bool = False,
    source_priority: str = "ai",
) -> AIDecision:
    run = _run_or_404(run_id)
    if run.status != "running":
        raise InvalidRunStateError(f"Run {run.id} is '{run.status}', decisions need a running run")
    if decision_type not in DECISION_TYPES:
        raise APIError(f"Unsupported decision_type '{decision_type}'", code="INVALID_DECISION_TYPE", status_code=422)
    if source_priority not in SOURCE_PRIORITY:
        raise APIError(f"Unsupported source_priority '{source_priority}'", code="INVALID_SOURCE", status_code=422)

    conf = Decimal(str(confidence)) if confidence is not None else None
    needs_review = bool(human_review_required) or conf is None or conf < _review_threshold()

    d = AIDecision(
        run_id=run.id,
        employee_id=employee_id,
        attendance_id=attendance_id,
        decision_type=decision_type,
        decision_payload=decision_payload or {},
        source_priority=source_priority,
        confidence=conf,
        human_review_required=needs_review,
    )
    db.session.add(d)
    db.session.commit()
    return d


def review_queue(organization_id: Optional[int] = None, limit: int = 200) -> List[AIDecision]:
    q = (
        AIDecision.query
        .filter(AIDecision.human_review_required.is_(True))
        .filter(AIDecision.reviewed_at.is_(None))
    )
    if organization_id is not None:
        q = q.join(AIRun, AIRun.id == AIDecision.run_id).filter(AIRun.organization_id == organization_id)
    return q.order_by(AIDecision.created_at.asc(), AIDecision.id.asc()).limit(limit).all()


def review_decision(decision_id: int, reviewer_id: int, approve: bool) -> AIDecision:
    d = _decision_or_404(decision_id)
    if d.reviewed_at is not None:
        raise APIError(f"Decision {d.id} was already reviewed", code="ALREADY_REVIEWED", status_code=409)
    d.reviewed_by = reviewer_id
    d.reviewed_at = datetime.utcnow()
    d.review_outcome = "approved" if approve else "rejected"
    db.session.commit()
    log.info("[ai] decision %s %s by %s", d.id, d.review_outcome, reviewer_id)
    return d


def _require_approved(d: AIDecision):
    if not d.is_approved:
        raise APIError(
            f"Decision {d.id} has not been approved by a reviewer", code="DECISION_NOT_APPROVED", status_code=409
        )


def apply_approved_decision(decision_id: int) -> AttendanceRecord:
    """Write an approved attendance-level decision onto its record as source `ai`."""
    d = _decision_or_404(decision_id)
    _require_approved(d)
    if d.attendance_id is None:
        raise APIError(f"Decision {d.id} is not tied to an attendance record", code="NO_ATTENDANCE", status_code=422)
    rec = db.session.get(AttendanceRecord, d.attendance_id)
    if rec is None:
        raise APIError(f"Attendance {d.attendance_id} not found", code="ATTENDANCE_NOT_FOUND", status_code=404)

    payload = d.decision_payload or {}
    if d.decision_type == "ot_calc":
        # OT is a month-level figure; the evidence is kept on the day row only
        changes: Dict[str, Any] = {}
    elif d.decision_type in _ATTENDANCE_FIELDS:
        changes = {k: payload[k] for k in _ATTENDANCE_FIELDS[d.decision_type] if k in payload}
    else:
        raise APIError(
            f"Decision type '{d.decision_type}' does not apply to attendance records",
            code="INVALID_DECISION_TYPE",
            status_code=422,
        )

    apply_attendance_override(rec, changes, source="ai", commit=False)
    rec.ai_hydration_meta = {
        "decision_id": d.id,
        "run_id": d.run_id,
        "decision_type": d.decision_type,
        "payload": payload,
        "confidence": float(d.confidence) if d.confidence is not None else None,
    }
    rec.ai_hydrated_at = datetime.utcnow()
    db.session.commit()
    log.info("[ai] decision %s applied to attendance %s", d.id, rec.id)
    return rec


def promote_to_monthly_override(decision_id: int, approver_id: Optional[int] = None) -> MonthlyOverride:
    """
    Turn an approved `override_apply` decision into the employee-month
    override it proposes. A manual override for that month is never replaced.
    """
    d = _decision_or_404(decision_id)
    _require_approved(d)
    if d.decision_type != "override_apply":
        raise APIError("Only override_apply decisions can be promoted", code="INVALID_DECISION_TYPE", status_code=422)

    payload = d.decision_payload or {}
    employee_id = d.employee_id or payload.get("employee_id")
    month = payload.get("month")
    year = payload.get("year")
    if not (employee_id and month and year):
        raise APIError(
            "override_apply payload needs employee_id, month and year", code="MALFORMED_DECISION", status_code=422
        )

    existing = MonthlyOverride.query.filter_by(employee_id=int(employee_id), month=int(month), year=int(year)).first()
    if existing is not None and existing.source == "manual":
        raise OverridePrecedenceError(
            f"A manual override already exists for employee {employee_id} {month}-{year}",
            payload={"owner": "manual", "incoming": "ai_approved"},
        )

    return set_monthly_override(
        int(employee_id),
        int(month),
        int(year),
        payload.get("counts") or payload,
        source="ai_approved",
        approved_by=approver_id or d.reviewed_by,
        reason=payload.get("reason") or f"AI decision {d.id}",
    )
