# payroll_api/services/payroll_run.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from payroll_api.extensions import db
from payroll_api.common.errors import APIError, InvalidPeriodStateError, PeriodNotFoundError
from payroll_api.models.master import Employee, Organization
from payroll_api.models.payroll import PayrollPeriod, PayrollRun
from payroll_api.services.attendance_basis import AttendanceBasis, resolve_attendance_basis
from payroll_api.services.compensation import (
    declared_deductions,
    declared_employer_cost,
    eval_components,
    get_active_compensation,
    gross_earnings,
)
from payroll_api.services.compliance import ComplianceResult, apply_compliance, has_statutory_components

log = logging.getLogger(__name__)

_TWO = Decimal("0.01")
_ZERO = Decimal("0")


def _q2(x) -> Decimal:
    return Decimal(str(x or 0)).quantize(_TWO, rounding=ROUND_HALF_UP)


# ---------- period state machine ----------

def get_period(period_id: int) -> PayrollPeriod:
    p = db.session.get(PayrollPeriod, period_id)
    if p is None:
        raise PeriodNotFoundError(f"Payroll period {period_id} not found")
    return p


def bootstrap_period(organization_id: int, month: int, year: int, created_by: Optional[int] = None) -> PayrollPeriod:
    if not 1 <= int(month) <= 12:
        raise APIError("month must be between 1 and 12", code="INVALID_MONTH", status_code=422)
    if db.session.get(Organization, organization_id) is None:
        raise APIError(f"Organization {organization_id} not found", code="ORGANIZATION_NOT_FOUND", status_code=404)

    p = PayrollPeriod.query.filter_by(organization_id=organization_id, month=int(month), year=int(year)).first()
    if p is not None:
        return p
    p = PayrollPeriod(organization_id=organization_id, month=int(month), year=int(year),
                      status="draft", created_by=created_by)
    db.session.add(p)
    db.session.commit()
    log.info("[payroll] period created id=%s org=%s %s-%s", p.id, organization_id, month, year)
    return p


def lock_period(period_id: int, user_id: Optional[int] = None) -> PayrollPeriod:
    p = get_period(period_id)
    if p.status != "draft":
        raise InvalidPeriodStateError(f"Period {p.id} is '{p.status}', only draft periods can be locked")
    p.status = "locked"
    p.lock_at = datetime.utcnow()
    p.locked_by = user_id
    db.session.commit()
    log.info("[payroll] period locked id=%s by=%s", p.id, user_id)
    return p


def close_period(period_id: int, user_id: Optional[int] = None) -> PayrollPeriod:
    p = get_period(period_id)
    if p.status != "locked":
        raise InvalidPeriodStateError(f"Period {p.id} is '{p.status}', only locked periods can be finalized")
    p.status = "finalized"
    p.finalized_at = datetime.utcnow()
    p.finalized_by = user_id
    db.session.commit()
    log.info("[payroll] period finalized id=%s by=%s", p.id, user_id)
    return p


# ---------- computation ----------

def _default_state(emp: Employee, state: Optional[str]) -> str:
    return state or emp.pt_state or current_app.config.get("PAYROLL_DEFAULT_STATE", "GJ")


def _compute(emp: Employee, month: int, year: int, state: Optional[str]) -> Dict[str, Any]:
    """Everything a run row holds, without touching the database."""
    basis: AttendanceBasis = resolve_attendance_basis(emp.id, month, year)
    active = get_active_compensation(emp.id, month, year)
    comps = eval_components(emp.id, month, year, basis=basis)

    gross = gross_earnings(comps)
    statutory_applied = has_statutory_components(active.components)
    if statutory_applied:
        comp = apply_compliance(emp.id, month, year, comps, _default_state(emp, state),
                                organization_id=emp.organization_id)
    else:
        comp = ComplianceResult(gross_earnings=gross)

    deductions = _q2(declared_deductions(comps) + comp.employee_total)
    net = _q2(gross - deductions)
    employer_cost = _q2(gross + declared_employer_cost(comps) + comp.employer_total)

    snapshot: List[Dict[str, Any]] = [
        {
            "code": c["code"],
            "name": c["name"],
            "type": c["type"],
            "monthly_amount": float(c["monthly_amount"]),
            "amount": float(c["amount"]),
        }
        for c in comps
    ]
    # statutory lines only when non-zero
    for code, name, ctype, value in (
        ("PF_EE", "PF Employee", "statutory_deduction", comp.pf_employee),
        ("ESIC_EE", "ESIC Employee", "statutory_deduction", comp.esic_employee),
        ("PT", "Professional Tax", "statutory_deduction", comp.pt_amount),
        ("TDS", "TDS", "statutory_deduction", comp.tds_amount),
        ("PF_ER", "PF Employer", "employer_cost", comp.pf_employer),
        ("ESIC_ER", "ESIC Employer", "employer_cost", comp.esic_employer),
    ):
        if value > 0:
            amount = -value if ctype == "statutory_deduction" else value
            snapshot.append({"code": code, "name": name, "type": ctype,
                             "monthly_amount": float(value), "amount": float(amount)})

    return {
        "employee_id": emp.id,
        "month": int(month),
        "year": int(year),
        "statutory_applied": statutory_applied,
        "basis": basis,
        "compliance": comp,
        "snapshot": snapshot,
        "gross_earnings": gross,
        "total_deductions": deductions,
        "net_pay": net,
        "employer_cost": employer_cost,
    }


def finalize_run(period_id: int, employee_id: int, state: Optional[str] = None, commit: bool = True) -> PayrollRun:
    """
    Compute and store the run for one employee in a locked period. An
    existing run for the pair is deleted first, so repeating the call gives
    the same row contents.
    """
    period = get_period(period_id)
    if period.status != "locked":
        raise InvalidPeriodStateError(
            f"Period {period.id} is '{period.status}', runs can only be finalized in a locked period",
            payload={"period_id": period.id, "status": period.status},
        )
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise APIError(f"Employee {employee_id} not found", code="EMPLOYEE_NOT_FOUND", status_code=404)
    if emp.organization_id != period.organization_id:
        raise APIError(
            f"Employee {emp.id} does not belong to organization {period.organization_id}",
            code="EMPLOYEE_ORG_MISMATCH",
            status_code=422,
        )

    result = _compute(emp, period.month, period.year, state)
    comp: ComplianceResult = result["compliance"]

    PayrollRun.query.filter_by(payroll_period_id=period.id, employee_id=emp.id).delete(synchronize_session="fetch")

    run = PayrollRun(
        payroll_period_id=period.id,
        employee_id=emp.id,
        snapshot=result["snapshot"],
        gross_earnings=result["gross_earnings"],
        total_deductions=result["total_deductions"],
        net_pay=result["net_pay"],
        employer_cost=result["employer_cost"],
        pf_wages=comp.pf_wages,
        esic_wages=comp.esic_wages,
        pt_amount=comp.pt_amount,
        tds_amount=comp.tds_amount,
        attendance_summary=result["basis"].to_dict(),
        status="processed",
    )
    db.session.add(run)
    if commit:
        db.session.commit()
    log.info(
        "[payroll] run finalized period=%s employee=%s gross=%s net=%s",
        period.id, emp.id, result["gross_earnings"], result["net_pay"],
    )
    return run


def finalize_period_runs(
    period_id: int,
    state: Optional[str] = None,
    employee_ids: Optional[Iterable[int]] = None,
) -> Dict[str, Any]:
    """
    Finalize every active employee of the period's organization (or the given
    subset). A failing employee is rolled back and reported; the rest carry on.
    """
    period = get_period(period_id)
    if period.status != "locked":
        raise InvalidPeriodStateError(
            f"Period {period.id} is '{period.status}', runs can only be finalized in a locked period"
        )

    q = Employee.query.filter(Employee.organization_id == period.organization_id)
    if employee_ids is not None:
        q = q.filter(Employee.id.in_([int(e) for e in employee_ids]))
    else:
        q = q.filter(Employee.status == "active")
    ids = [e.id for e in q.order_by(Employee.id.asc()).all()]

    processed: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for emp_id in ids:
        try:
            run = finalize_run(period.id, emp_id, state=state)
            processed.append({"employee_id": emp_id, "run_id": run.id, "net_pay": float(run.net_pay)})
        except APIError as e:
            db.session.rollback()
            log.warning("[payroll] finalize failed period=%s employee=%s: %s", period.id, emp_id, e.message)
            errors.append({"employee_id": emp_id, "code": e.code, "message": e.message})
        except Exception as e:
            db.session.rollback()
            log.warning("[payroll] finalize crashed period=%s employee=%s", period.id, emp_id, exc_info=True)
            errors.append({"employee_id": emp_id, "code": "INTERNAL_ERROR", "message": str(e)})

    log.info(
        "[payroll] batch finalize period=%s processed=%s failed=%s", period.id, len(processed), len(errors)
    )
    return {"period_id": period.id, "processed": processed, "errors": errors}


def preview_run(employee_id: int, month: int, year: int, state: Optional[str] = None) -> Dict[str, Any]:
    """Same numbers as finalize_run, nothing written and no period required."""
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise APIError(f"Employee {employee_id} not found", code="EMPLOYEE_NOT_FOUND", status_code=404)
    r = _compute(emp, month, year, state)
    return {
        "employee_id": emp.id,
        "month": r["month"],
        "year": r["year"],
        "statutory_applied": r["statutory_applied"],
        "attendance": r["basis"].to_dict(),
        "compliance": r["compliance"].to_dict(),
        "snapshot": r["snapshot"],
        "gross_earnings": float(r["gross_earnings"]),
        "total_deductions": float(r["total_deductions"]),
        "net_pay": float(r["net_pay"]),
        "employer_cost": float(r["employer_cost"]),
    }


def list_runs(period_id: int) -> List[PayrollRun]:
    get_period(period_id)
    return (
        PayrollRun.query
        .filter_by(payroll_period_id=period_id)
        .order_by(PayrollRun.employee_id.asc())
        .all()
    )


def get_run(period_id: int, employee_id: int) -> PayrollRun:
    run = PayrollRun.query.filter_by(payroll_period_id=period_id, employee_id=employee_id).first()
    if run is None:
        raise APIError(
            f"No run for employee {employee_id} in period {period_id}", code="RUN_NOT_FOUND", status_code=404
        )
    return run
