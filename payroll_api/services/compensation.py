# payroll_api/services/compensation.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from payroll_api.extensions import db
from payroll_api.common.errors import (
    APIError,
    MalformedComponentPayloadError,
    MissingCompensationError,
)
from payroll_api.models.master import Employee
from payroll_api.models.payroll import EmployeeCompensation, PayComponentDefinition

log = logging.getLogger(__name__)

_TWO = Decimal("0.01")
_ZERO = Decimal("0")

# Codes the compliance calculator owns. Declared amounts under these codes are
# never paid out as-is.
STATUTORY_CODES = frozenset({
    "PF", "PF_EE", "PF_ER", "PF_EMPLOYEE", "PF_EMPLOYER",
    "ESI", "ESIC", "ESIC_EE", "ESIC_ER", "ESIC_EMPLOYEE", "ESIC_EMPLOYER",
    "PT", "TDS",
})


def q2(x) -> Decimal:
    return Decimal(str(x or 0)).quantize(_TWO, rounding=ROUND_HALF_UP)


def anchor_date(month: int, year: int) -> date:
    """Mid-month anchor used to pick the plan in force for a pay month."""
    if not 1 <= int(month) <= 12:
        raise APIError("month must be between 1 and 12", code="INVALID_MONTH", status_code=422)
    return date(int(year), int(month), 15)


def component_code(raw: Dict[str, Any]) -> str:
    return str(raw.get("component_code") or raw.get("code") or "").strip().upper()


def parse_components(payload: Any) -> List[Dict[str, Any]]:
    """
    Pull the `components` list out of a stored payload. Some writers stored
    the JSON document as a string (occasionally twice-encoded), so strings are
    decoded until an object comes out.
    """
    doc = payload
    for _ in range(2):
        if not isinstance(doc, str):
            break
        try:
            doc = json.loads(doc)
        except ValueError:
            raise MalformedComponentPayloadError("compensation_payload is not valid JSON")

    if not isinstance(doc, dict):
        raise MalformedComponentPayloadError("compensation_payload must be a JSON object")
    comps = doc.get("components")
    if not isinstance(comps, list):
        raise MalformedComponentPayloadError("compensation_payload.components must be a list")

    out = [c for c in comps if isinstance(c, dict)]
    for c in out:
        try:
            amount = Decimal(str(c.get("amount") or 0))
        except (InvalidOperation, ValueError, TypeError):
            amount = None
        if amount is None or not amount.is_finite():
            raise MalformedComponentPayloadError(
                f"Component {component_code(c) or '?'} has a non-numeric amount: {c.get('amount')!r}"
            )
    return out


@dataclass
class ActiveCompensation:
    record: EmployeeCompensation
    components: List[Dict[str, Any]]


def get_active_compensation(employee_id: int, month: int, year: int) -> ActiveCompensation:
    on = anchor_date(month, year)
    rec = (
        EmployeeCompensation.query
        .filter(EmployeeCompensation.employee_id == employee_id)
        .filter(EmployeeCompensation.effective_from <= on)
        .filter(db.or_(EmployeeCompensation.effective_to.is_(None), EmployeeCompensation.effective_to >= on))
        .order_by(EmployeeCompensation.effective_from.desc(), EmployeeCompensation.id.desc())
        .first()
    )
    if rec is None:
        raise MissingCompensationError(
            f"No compensation effective for employee {employee_id} on {on.isoformat()}",
            payload={"employee_id": employee_id, "month": int(month), "year": int(year)},
        )
    return ActiveCompensation(record=rec, components=parse_components(rec.compensation_payload))


def _definitions(codes) -> Dict[str, PayComponentDefinition]:
    if not codes:
        return {}
    rows = (
        PayComponentDefinition.query
        .filter(PayComponentDefinition.code.in_(list(codes)))
        .filter(PayComponentDefinition.active.is_(True))
        .all()
    )
    return {r.code.upper(): r for r in rows}


def eval_components(employee_id: int, month: int, year: int, basis=None) -> List[Dict[str, Any]]:
    """
    Monthly, prorated line items for the plan in force.

    `amount` carries the sign used downstream: positive for earnings and
    employer costs, negative for deductions. Proration is payable/working
    from `basis`; without a basis nothing is prorated.
    """
    active = get_active_compensation(employee_id, month, year)
    factor = basis.proration_factor if basis is not None else Decimal("1")

    raw = [c for c in active.components if component_code(c) and component_code(c) not in STATUTORY_CODES]
    defs = _definitions({component_code(c) for c in raw})

    out: List[Dict[str, Any]] = []
    for c in raw:
        code = component_code(c)
        annual = Decimal(str(c.get("amount") or 0))
        d = defs.get(code)
        if d is not None:
            ctype = d.type
            name = d.name
        else:
            ctype = "deduction" if annual < 0 else "earning"
            name = c.get("name") or code

        # prorate from the unrounded monthly figure
        raw_monthly = abs(annual) / Decimal("12")
        monthly = q2(raw_monthly)
        prorated = q2(raw_monthly * factor)
        signed = -prorated if ctype in ("deduction", "statutory_deduction") else prorated
        out.append({
            "code": code,
            "name": name,
            "type": ctype,
            "annual_amount": abs(annual),
            "monthly_amount": monthly,
            "prorated_amount": prorated,
            "amount": signed,
        })
    return out


def gross_earnings(components: List[Dict[str, Any]]) -> Decimal:
    return q2(sum((c["amount"] for c in components if c["type"] == "earning"), _ZERO))


def declared_deductions(components: List[Dict[str, Any]]) -> Decimal:
    return q2(sum((abs(c["amount"]) for c in components if c["type"] in ("deduction", "statutory_deduction")), _ZERO))


def declared_employer_cost(components: List[Dict[str, Any]]) -> Decimal:
    return q2(sum((c["amount"] for c in components if c["type"] == "employer_cost"), _ZERO))


def save_compensation(
    employee_id: int,
    effective_from: date,
    components: List[Dict[str, Any]],
    ctc_annual=None,
    effective_to: Optional[date] = None,
    pay_schedule: str = "monthly",
    currency: str = "INR",
    created_by: Optional[int] = None,
    notes: Optional[str] = None,
) -> EmployeeCompensation:
    """
    Insert a new plan. The employee's open-ended plan that started earlier is
    closed the day before `effective_from` so ranges do not overlap.
    """
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise APIError(f"Employee {employee_id} not found", code="EMPLOYEE_NOT_FOUND", status_code=404)
    if effective_to is not None and effective_to < effective_from:
        raise APIError("effective_to must be on or after effective_from", code="INVALID_RANGE", status_code=422)

    payload: Dict[str, Any] = {"components": components}
    if notes:
        payload["notes"] = notes
    parsed = parse_components(payload)  # rejects bad lists and amounts before writing

    if ctc_annual is None:
        amounts = (Decimal(str(c.get("amount") or 0)) for c in parsed)
        ctc_annual = sum((a for a in amounts if a > 0), _ZERO)

    prev = (
        EmployeeCompensation.query
        .filter(EmployeeCompensation.employee_id == emp.id)
        .filter(EmployeeCompensation.effective_to.is_(None))
        .filter(EmployeeCompensation.effective_from < effective_from)
        .order_by(EmployeeCompensation.effective_from.desc())
        .first()
    )
    if prev is not None:
        prev.effective_to = effective_from - timedelta(days=1)
        log.info("[compensation] closed plan=%s employee=%s at %s", prev.id, emp.id, prev.effective_to)

    rec = EmployeeCompensation(
        employee_id=emp.id,
        organization_id=emp.organization_id,
        effective_from=effective_from,
        effective_to=effective_to,
        ctc_annual=q2(ctc_annual),
        pay_schedule=pay_schedule,
        currency=currency,
        compensation_payload=payload,
        created_by=created_by,
    )
    db.session.add(rec)
    db.session.commit()
    log.info("[compensation] saved plan=%s employee=%s from=%s", rec.id, emp.id, effective_from)
    return rec
