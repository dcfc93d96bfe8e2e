from decimal import Decimal

import pytest

from payroll_api.extensions import db
from payroll_api.common.errors import InvalidPeriodStateError
from payroll_api.models.payroll import PayrollRun
from payroll_api.services import payroll_run
from payroll_api.services.payroll_run import (
    bootstrap_period,
    close_period,
    finalize_period_runs,
    finalize_run,
    lock_period,
    preview_run,
)

STAT_PLAN = [
    {"code": "BASIC", "amount": 240000},
    {"code": "HRA", "amount": 96000},
    {"code": "PF_EE", "amount": 21600},
]


@pytest.fixture
def org(seed):
    return seed.org(state="GJ")


@pytest.fixture
def shift(seed, org):
    return seed.shift(org)


def _employee(seed, org, shift, code, plan):
    e = seed.employee(org, code)
    seed.assign(e, shift)
    if plan is not None:
        seed.plan(e, plan)
    return e


def _locked_period(org):
    p = bootstrap_period(org.id, 4, 2025)
    return lock_period(p.id, user_id=1)


def _comparable(run):
    d = run.to_dict()
    d.pop("id")
    d.pop("created_at")
    return d


def test_period_state_machine(org):
    p = bootstrap_period(org.id, 4, 2025)
    assert p.status == "draft"
    assert bootstrap_period(org.id, 4, 2025).id == p.id

    with pytest.raises(InvalidPeriodStateError):
        close_period(p.id)
    lock_period(p.id)
    with pytest.raises(InvalidPeriodStateError):
        lock_period(p.id)
    p = close_period(p.id, user_id=7)
    assert p.status == "finalized"
    assert p.finalized_by == 7


def test_finalize_requires_locked_period(seed, org, shift):
    emp = _employee(seed, org, shift, "E001", STAT_PLAN)
    p = bootstrap_period(org.id, 4, 2025)
    with pytest.raises(InvalidPeriodStateError):
        finalize_run(p.id, emp.id)
    assert PayrollRun.query.count() == 0


def test_finalize_with_statutory_plan(seed, org, shift):
    emp = _employee(seed, org, shift, "E001", STAT_PLAN)
    p = _locked_period(org)

    run = finalize_run(p.id, emp.id, state="GJ")
    assert run.gross_earnings == Decimal("28000.00")
    assert run.pf_wages == Decimal("15000.00")
    assert run.pt_amount == Decimal("200.00")
    assert run.total_deductions == Decimal("2000.00")
    assert run.net_pay == Decimal("26000.00")
    assert run.employer_cost == Decimal("29800.00")
    assert run.status == "processed"
    assert run.attendance_summary["payable_days"] == 22

    codes = [line["code"] for line in run.snapshot]
    assert codes == ["BASIC", "HRA", "PF_EE", "PT", "PF_ER"]
    pf_line = next(line for line in run.snapshot if line["code"] == "PF_EE")
    assert pf_line["amount"] == -1800.0


def test_single_basic_plan_gets_no_statutory_deductions(seed, org, shift):
    emp = _employee(seed, org, shift, "E001", [{"code": "BASIC", "amount": 240000}])
    p = _locked_period(org)

    run = finalize_run(p.id, emp.id, state="GJ")
    assert run.pf_wages == 0
    assert run.pt_amount == 0
    assert run.net_pay == run.gross_earnings == Decimal("20000.00")
    assert [line["code"] for line in run.snapshot] == ["BASIC"]


def test_finalize_is_idempotent(seed, org, shift):
    emp = _employee(seed, org, shift, "E001", STAT_PLAN)
    p = _locked_period(org)

    first = _comparable(finalize_run(p.id, emp.id))
    second = _comparable(finalize_run(p.id, emp.id))
    assert first == second
    assert PayrollRun.query.filter_by(payroll_period_id=p.id, employee_id=emp.id).count() == 1


def test_state_falls_back_to_employee_then_org(seed, org, shift):
    emp = _employee(seed, org, shift, "E001", STAT_PLAN)
    emp.work_state = "KA"
    db.session.flush()
    p = _locked_period(org)
    assert finalize_run(p.id, emp.id).pt_amount == Decimal("200.00")

    emp.work_state = "DL"
    db.session.commit()
    assert finalize_run(p.id, emp.id).pt_amount == 0


def test_batch_isolates_failures(seed, org, shift):
    good = _employee(seed, org, shift, "E001", STAT_PLAN)
    no_plan = _employee(seed, org, shift, "E002", None)
    _employee(seed, org, shift, "E003", [{"code": "BASIC", "amount": 120000}])
    inactive = _employee(seed, org, shift, "E004", STAT_PLAN)
    inactive.status = "inactive"
    p = _locked_period(org)

    out = finalize_period_runs(p.id, state="GJ")
    assert [r["employee_id"] for r in out["processed"]] == [good.id, good.id + 2]
    assert out["errors"] == [{
        "employee_id": no_plan.id,
        "code": "MISSING_COMPENSATION",
        "message": out["errors"][0]["message"],
    }]
    assert PayrollRun.query.filter_by(payroll_period_id=p.id).count() == 2
    assert PayrollRun.query.filter_by(employee_id=inactive.id).count() == 0


def test_batch_reports_non_numeric_amount(seed, org, shift):
    bad = seed.employee(org, "E001")
    seed.assign(bad, shift)
    seed.plan(bad, [], payload={"components": [{"code": "BASIC", "amount": "12k"}]})
    good = _employee(seed, org, shift, "E002", STAT_PLAN)
    p = _locked_period(org)

    out = finalize_period_runs(p.id, state="GJ")
    assert [r["employee_id"] for r in out["processed"]] == [good.id]
    assert [(e["employee_id"], e["code"]) for e in out["errors"]] == [(bad.id, "MALFORMED_COMPONENT_PAYLOAD")]
    assert "BASIC" in out["errors"][0]["message"]


def test_batch_survives_unexpected_exception(monkeypatch, seed, org, shift):
    first = _employee(seed, org, shift, "E001", STAT_PLAN)
    second = _employee(seed, org, shift, "E002", STAT_PLAN)
    p = _locked_period(org)

    real_compute = payroll_run._compute

    def _compute(emp, month, year, state):
        if emp.id == first.id:
            raise RuntimeError("disk on fire")
        return real_compute(emp, month, year, state)

    monkeypatch.setattr(payroll_run, "_compute", _compute)
    out = finalize_period_runs(p.id, state="GJ")
    assert [r["employee_id"] for r in out["processed"]] == [second.id]
    assert out["errors"] == [{"employee_id": first.id, "code": "INTERNAL_ERROR", "message": "disk on fire"}]
    assert PayrollRun.query.filter_by(employee_id=second.id).count() == 1


def test_preview_matches_finalize_without_writing(seed, org, shift):
    emp = _employee(seed, org, shift, "E001", STAT_PLAN)
    pv = preview_run(emp.id, 4, 2025, state="GJ")
    assert PayrollRun.query.count() == 0
    assert pv["statutory_applied"] is True

    p = _locked_period(org)
    run = finalize_run(p.id, emp.id, state="GJ")
    assert pv["net_pay"] == float(run.net_pay)
    assert pv["snapshot"] == run.snapshot
