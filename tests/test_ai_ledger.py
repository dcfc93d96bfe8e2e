from datetime import date, datetime

import pytest

from payroll_api.extensions import db
from payroll_api.common.errors import (
    APIError,
    InvalidPolicyStateError,
    InvalidRunStateError,
    NoActivePolicyError,
    OverridePrecedenceError,
)
from payroll_api.models.ai import AIPolicy
from payroll_api.models.attendance import AttendanceRecord, MonthlyOverride
from payroll_api.services import ai_ledger
from payroll_api.services.attendance_basis import resolve_attendance_basis, set_monthly_override


@pytest.fixture
def org(seed):
    return seed.org()


@pytest.fixture
def emp(seed, org):
    e = seed.employee(org)
    seed.assign(e, seed.shift(org))
    return e


def _active_policy(org, name="hydration"):
    p = ai_ledger.create_policy(org.id, name, "Flag late arrivals using shift thresholds.")
    ai_ledger.approve_policy(p.id, approved_by=1)
    return ai_ledger.activate_policy(p.id)


def _running(org):
    _active_policy(org)
    return ai_ledger.start_run(org.id, "weekly_hydration", date(2025, 4, 1), date(2025, 4, 7))


def _approved(run, decision_type, payload, **kw):
    d = ai_ledger.record_decision(run.id, decision_type, payload, confidence=0.95, **kw)
    return ai_ledger.review_decision(d.id, reviewer_id=42, approve=True)


def test_policy_versions_increment(org):
    a = ai_ledger.create_policy(org.id, "hydration", "v1")
    b = ai_ledger.create_policy(org.id, "hydration", "v2")
    assert (a.policy_version, b.policy_version) == (1, 2)
    assert a.model_name == "gemini-2.5-flash"


def test_only_one_active_policy(org):
    first = _active_policy(org)
    second = _active_policy(org)

    assert AIPolicy.query.filter_by(organization_id=org.id, status="active").count() == 1
    assert ai_ledger.get_active_policy(org.id).id == second.id
    assert db.session.get(AIPolicy, first.id).status == "retired"


def test_activation_needs_approval(org):
    p = ai_ledger.create_policy(org.id, "hydration", "draft only")
    with pytest.raises(InvalidPolicyStateError):
        ai_ledger.activate_policy(p.id)


def test_run_needs_active_policy(org):
    with pytest.raises(NoActivePolicyError):
        ai_ledger.start_run(org.id, "weekly_hydration")


def test_run_lifecycle(org):
    run = _running(org)
    assert run.status == "running"
    run = ai_ledger.complete_run(run.id, {"decisions": 0})
    assert run.status == "completed"
    assert run.completed_at is not None

    with pytest.raises(InvalidRunStateError):
        ai_ledger.fail_run(run.id, "too late")
    with pytest.raises(InvalidRunStateError):
        ai_ledger.record_decision(run.id, "late_flag", {"is_late": True}, confidence=0.99)


def test_low_or_missing_confidence_needs_review(org, emp):
    run = _running(org)
    sure = ai_ledger.record_decision(run.id, "late_flag", {"is_late": True}, employee_id=emp.id, confidence=0.95)
    unsure = ai_ledger.record_decision(run.id, "late_flag", {"is_late": True}, employee_id=emp.id, confidence=0.5)
    blank = ai_ledger.record_decision(run.id, "holiday_flag", {"is_holiday": True}, employee_id=emp.id)
    forced = ai_ledger.record_decision(run.id, "ot_calc", {"ot_hours": 2}, confidence=0.99,
                                       human_review_required=True)

    assert not sure.human_review_required
    assert unsure.human_review_required and blank.human_review_required and forced.human_review_required

    queue = ai_ledger.review_queue(org.id)
    assert [d.id for d in queue] == [unsure.id, blank.id, forced.id]

    ai_ledger.review_decision(unsure.id, reviewer_id=42, approve=False)
    assert [d.id for d in ai_ledger.review_queue(org.id)] == [blank.id, forced.id]

    with pytest.raises(APIError):
        ai_ledger.review_decision(unsure.id, reviewer_id=42, approve=True)


def test_apply_approved_decision_goes_through_priority(session, org, emp):
    run = _running(org)
    rec = AttendanceRecord(organization_id=org.id, employee_id=emp.id, date=date(2025, 4, 7),
                           punch_in_time=datetime(2025, 4, 7, 9, 0), punch_out_time=datetime(2025, 4, 7, 18, 0))
    manual = AttendanceRecord(organization_id=org.id, employee_id=emp.id, date=date(2025, 4, 8),
                              is_absent=True, source="manual")
    session.add_all([rec, manual])
    session.flush()

    d = _approved(run, "late_flag", {"is_late": True}, employee_id=emp.id, attendance_id=rec.id)
    out = ai_ledger.apply_approved_decision(d.id)
    assert out.is_late
    assert out.source == "ai"
    assert out.ai_hydration_meta["decision_id"] == d.id

    d2 = _approved(run, "attendance_status", {"is_absent": False}, employee_id=emp.id, attendance_id=manual.id)
    with pytest.raises(OverridePrecedenceError):
        ai_ledger.apply_approved_decision(d2.id)


def test_unapproved_decision_is_not_applied(org, emp):
    run = _running(org)
    d = ai_ledger.record_decision(run.id, "override_apply", {"month": 4, "year": 2025}, employee_id=emp.id,
                                  confidence=0.99)
    with pytest.raises(APIError) as ei:
        ai_ledger.promote_to_monthly_override(d.id)
    assert ei.value.code == "DECISION_NOT_APPROVED"


def test_promotion_creates_ai_approved_override(org, emp):
    run = _running(org)
    d = _approved(run, "override_apply",
                  {"month": 4, "year": 2025, "counts": {"present_days": 18, "half_days": 2}},
                  employee_id=emp.id)

    ovr = ai_ledger.promote_to_monthly_override(d.id)
    assert ovr.source == "ai_approved"
    assert ovr.approved_by == 42

    b = resolve_attendance_basis(emp.id, 4, 2025)
    assert b.source == "override:ai_approved"
    assert b.payable_days == 19


def test_promotion_never_replaces_manual_override(org, emp):
    set_monthly_override(emp.id, 4, 2025, {"present_days": 20}, source="manual")
    run = _running(org)
    d = _approved(run, "override_apply", {"month": 4, "year": 2025, "counts": {"present_days": 10}},
                  employee_id=emp.id)

    with pytest.raises(OverridePrecedenceError):
        ai_ledger.promote_to_monthly_override(d.id)
    assert MonthlyOverride.query.filter_by(employee_id=emp.id).one().present_days == 20
