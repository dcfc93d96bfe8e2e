# payroll_api/services/compliance.py
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from payroll_api.models.payroll.stat_config import StatConfig
from payroll_api.services.compensation import STATUTORY_CODES, anchor_date, component_code

log = logging.getLogger(__name__)

_TWO = Decimal("0.01")
_ZERO = Decimal("0")

BASIC_CODES = ("BASIC", "BASIC_SALARY")
DA_CODES = ("DA", "DEARNESS_ALLOWANCE")

# statutory defaults used when no StatConfig row resolves
PF_DEFAULTS = {"emp_rate": Decimal("0.12"), "er_rate": Decimal("0.12"), "wage_cap": Decimal("15000")}
ESI_DEFAULTS = {"emp_rate": Decimal("0.0075"), "er_rate": Decimal("0.0325"), "threshold": Decimal("21000")}


def _q2(x) -> Decimal:
    return Decimal(str(x or 0)).quantize(_TWO, rounding=ROUND_HALF_UP)


# ---------- professional tax ----------

@dataclass(frozen=True)
class PTSlabTable:
    """
    Monthly professional tax slabs for one jurisdiction. Each slab is
    (upper bound inclusive, amount); an upper bound of None closes the table.
    """
    state: str
    slabs: Tuple[Tuple[Optional[Decimal], Decimal], ...]

    def amount_for(self, gross) -> Decimal:
        g = Decimal(str(gross or 0))
        for upper, amount in self.slabs:
            if upper is None or g <= upper:
                return amount
        return _ZERO

    @classmethod
    def from_json(cls, state: str, slabs: Iterable[Dict[str, Any]]) -> "PTSlabTable":
        rows = []
        for s in slabs or []:
            upper = s.get("max")
            rows.append((Decimal(str(upper)) if upper is not None else None, Decimal(str(s.get("amount") or 0))))
        # open-ended slab last
        rows.sort(key=lambda r: (r[0] is None, r[0] or _ZERO))
        return cls(state=state, slabs=tuple(rows))


def _table(state: str, *slabs) -> PTSlabTable:
    return PTSlabTable(
        state=state,
        slabs=tuple((Decimal(str(u)) if u is not None else None, Decimal(str(a))) for u, a in slabs),
    )


PT_TABLES: Dict[str, PTSlabTable] = {
    "GJ": _table("GJ", (5999, 0), (8999, 80), (11999, 150), (None, 200)),
    "MH": _table("MH", (7500, 0), (10000, 175), (None, 200)),
    "KA": _table("KA", (None, 200)),
    "TN": _table("TN", (21000, 0), (30000, 135), (45000, 315), (60000, 690), (75000, 1025), (None, 1250)),
    "AP": _table("AP", (15000, 150), (None, 200)),
    "TS": _table("TS", (15000, 150), (None, 200)),
    "WB": _table("WB", (10000, 0), (15000, 110), (25000, 130), (40000, 150), (None, 200)),
    "RJ": _table("RJ", (12000, 0), (15000, 100), (20000, 150), (None, 200)),
    "DL": _table("DL", (None, 0)),
}

STATE_ALIASES = {
    "GUJARAT": "GJ",
    "MAHARASHTRA": "MH",
    "KARNATAKA": "KA",
    "TAMIL NADU": "TN",
    "TAMILNADU": "TN",
    "ANDHRA PRADESH": "AP",
    "TELANGANA": "TS",
    "WEST BENGAL": "WB",
    "RAJASTHAN": "RJ",
    "DELHI": "DL",
}


def normalize_state(state: Optional[str]) -> str:
    s = (state or "").strip().upper()
    return STATE_ALIASES.get(s, s)


def calculate_pt(gross, state: Optional[str]) -> Decimal:
    code = normalize_state(state)
    table = PT_TABLES.get(code)
    if table is None:
        log.debug("[compliance] no PT table for state=%r, PT=0", state)
        return _ZERO
    return table.amount_for(gross)


# ---------- scoped configuration ----------

def resolve_configs(cfg_type: str, organization_id: Optional[int], state: Optional[str], on_date: date) -> List[StatConfig]:
    """
    StatConfig rows of `cfg_type` effective on `on_date`, best first:
    org + state, then state-only, then org-only, then global. Within a tier
    lower `priority` wins, ties go to the most recent `effective_from`.
    """
    q = (
        StatConfig.query
        .filter(StatConfig.type == cfg_type)
        .filter(StatConfig.effective_from <= on_date)
        .filter((StatConfig.effective_to.is_(None)) | (StatConfig.effective_to >= on_date))
        .filter(StatConfig.closed_at.is_(None))
    )

    def _ordered(subq):
        return subq.order_by(StatConfig.priority.asc(), StatConfig.effective_from.desc(), StatConfig.id.desc()).all()

    out: List[StatConfig] = []
    if organization_id is not None and state:
        out.extend(_ordered(q.filter(StatConfig.scope_organization_id == organization_id, StatConfig.scope_state == state)))
    if state:
        out.extend(_ordered(q.filter(StatConfig.scope_organization_id.is_(None), StatConfig.scope_state == state)))
    if organization_id is not None:
        out.extend(_ordered(q.filter(StatConfig.scope_organization_id == organization_id, StatConfig.scope_state.is_(None))))
    out.extend(_ordered(q.filter(StatConfig.scope_organization_id.is_(None), StatConfig.scope_state.is_(None))))
    return out


def _rates(cfg_type: str, defaults: Dict[str, Decimal], organization_id, state, on_date) -> Dict[str, Decimal]:
    rows = resolve_configs(cfg_type, organization_id, state, on_date)
    out = dict(defaults)
    if rows:
        j = rows[0].value_json or {}
        for k in defaults:
            if j.get(k) is not None:
                out[k] = Decimal(str(j[k]))
    return out


def _pt_table(organization_id, state: str, on_date: date) -> Optional[PTSlabTable]:
    rows = resolve_configs("PT", organization_id, state, on_date)
    for r in rows:
        slabs = (r.value_json or {}).get("slabs")
        if slabs:
            return PTSlabTable.from_json(state, slabs)
    return PT_TABLES.get(state)


# ---------- calculator ----------

def has_statutory_components(raw_components: Iterable[Dict[str, Any]]) -> bool:
    """True when the declared plan names at least one statutory code."""
    return any(component_code(c) in STATUTORY_CODES for c in raw_components or [] if isinstance(c, dict))


@dataclass
class ComplianceResult:
    pf_wages: Decimal = _ZERO
    pf_employee: Decimal = _ZERO
    pf_employer: Decimal = _ZERO
    esic_wages: Decimal = _ZERO
    esic_employee: Decimal = _ZERO
    esic_employer: Decimal = _ZERO
    pt_amount: Decimal = _ZERO
    tds_amount: Decimal = _ZERO
    gross_earnings: Decimal = _ZERO

    @property
    def employee_total(self) -> Decimal:
        return self.pf_employee + self.esic_employee + self.pt_amount + self.tds_amount

    @property
    def employer_total(self) -> Decimal:
        return self.pf_employer + self.esic_employer

    def to_dict(self) -> Dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}


def apply_compliance(
    employee_id: int,
    month: int,
    year: int,
    components: List[Dict[str, Any]],
    state: Optional[str],
    organization_id: Optional[int] = None,
) -> ComplianceResult:
    """
    PF, ESIC and PT for one employee-month from the evaluated components.
    TDS is not computed and is always zero.
    """
    on = anchor_date(month, year)
    st = normalize_state(state)

    gross = _q2(sum((Decimal(str(c["amount"])) for c in components if c["type"] == "earning"), _ZERO))
    basic = sum((Decimal(str(c["amount"])) for c in components if c["code"] in BASIC_CODES), _ZERO)
    da = sum((Decimal(str(c["amount"])) for c in components if c["code"] in DA_CODES), _ZERO)

    pf = _rates("PF", PF_DEFAULTS, organization_id, st, on)
    pf_wages = _q2(min(basic + da, pf["wage_cap"]))
    pf_wages = max(pf_wages, _ZERO)

    esi = _rates("ESI", ESI_DEFAULTS, organization_id, st, on)
    esic_applies = _ZERO < gross <= esi["threshold"]
    esic_wages = gross if esic_applies else _ZERO

    table = _pt_table(organization_id, st, on)
    pt = table.amount_for(gross) if table is not None else _ZERO
    if table is None:
        log.debug("[compliance] employee=%s no PT table for state=%r", employee_id, state)

    result = ComplianceResult(
        pf_wages=pf_wages,
        pf_employee=_q2(pf_wages * pf["emp_rate"]),
        pf_employer=_q2(pf_wages * pf["er_rate"]),
        esic_wages=esic_wages,
        esic_employee=_q2(esic_wages * esi["emp_rate"]),
        esic_employer=_q2(esic_wages * esi["er_rate"]),
        pt_amount=_q2(pt),
        tds_amount=_ZERO,
        gross_earnings=gross,
    )
    log.debug("[compliance] employee=%s %s-%s state=%s -> %s", employee_id, month, year, st, result.to_dict())
    return result
