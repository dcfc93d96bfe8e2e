import json
from datetime import date
from decimal import Decimal

import pytest

from payroll_api.extensions import db
from payroll_api.common.errors import MalformedComponentPayloadError, MissingCompensationError
from payroll_api.models.attendance import MonthlyOverride
from payroll_api.models.payroll import EmployeeCompensation, PayComponentDefinition
from payroll_api.services.attendance_basis import resolve_attendance_basis
from payroll_api.services.compensation import (
    eval_components,
    get_active_compensation,
    gross_earnings,
    save_compensation,
)


@pytest.fixture
def emp(session, seed):
    org = seed.org()
    e = seed.employee(org)
    seed.assign(e, seed.shift(org))
    return e


def _by_code(rows):
    return {r["code"]: r for r in rows}


def test_anchor_is_mid_month(seed, emp):
    seed.plan(emp, [{"code": "BASIC", "amount": 120000}], effective_from=date(2025, 1, 1),
              effective_to=date(2025, 4, 14))
    newer = seed.plan(emp, [{"code": "BASIC", "amount": 240000}], effective_from=date(2025, 4, 15))
    assert get_active_compensation(emp.id, 4, 2025).record.id == newer.id


def test_latest_effective_from_wins_on_overlap(seed, emp):
    seed.plan(emp, [{"code": "BASIC", "amount": 120000}], effective_from=date(2025, 1, 1))
    later = seed.plan(emp, [{"code": "BASIC", "amount": 180000}], effective_from=date(2025, 3, 1))
    assert get_active_compensation(emp.id, 4, 2025).record.id == later.id


def test_gap_around_the_15th_is_missing(seed, emp):
    seed.plan(emp, [{"code": "BASIC", "amount": 1}], effective_from=date(2025, 1, 1), effective_to=date(2025, 4, 10))
    seed.plan(emp, [{"code": "BASIC", "amount": 1}], effective_from=date(2025, 4, 16))
    with pytest.raises(MissingCompensationError):
        get_active_compensation(emp.id, 4, 2025)


def test_malformed_payload(seed, emp):
    seed.plan(emp, [], payload={"components": "BASIC=100"})
    with pytest.raises(MalformedComponentPayloadError):
        get_active_compensation(emp.id, 4, 2025)


def test_double_encoded_payload_is_accepted(seed, emp):
    doc = {"components": [{"component_code": "BASIC", "amount": 240000}]}
    seed.plan(emp, [], payload=json.dumps(json.dumps(doc)))
    comps = get_active_compensation(emp.id, 4, 2025).components
    assert comps == doc["components"]


def test_monthly_equals_prorated_on_full_attendance(seed, emp):
    seed.plan(emp, [
        {"code": "BASIC", "amount": 240000},
        {"code": "HRA", "amount": 100001},
        {"code": "LOAN_EMI", "amount": -24000},
    ])
    basis = resolve_attendance_basis(emp.id, 4, 2025)
    rows = _by_code(eval_components(emp.id, 4, 2025, basis=basis))

    for r in rows.values():
        assert r["prorated_amount"] == r["monthly_amount"]
    assert rows["HRA"]["monthly_amount"] == Decimal("8333.42")
    assert rows["LOAN_EMI"]["type"] == "deduction"
    assert rows["LOAN_EMI"]["amount"] == Decimal("-2000.00")
    assert gross_earnings(list(rows.values())) == Decimal("28333.42")


def test_earnings_and_deductions_prorate_alike(session, seed, emp):
    seed.plan(emp, [{"code": "BASIC", "amount": 264000}, {"code": "LOAN_EMI", "amount": -26400}])
    session.add(MonthlyOverride(employee_id=emp.id, month=4, year=2025, present_days=21, source="manual"))
    session.flush()

    basis = resolve_attendance_basis(emp.id, 4, 2025)
    rows = _by_code(eval_components(emp.id, 4, 2025, basis=basis))
    assert rows["BASIC"]["prorated_amount"] == Decimal("21000.00")
    assert rows["LOAN_EMI"]["prorated_amount"] == Decimal("2100.00")


def test_proration_rounds_once(session, seed, emp):
    seed.plan(emp, [{"code": "BASIC", "amount": 100000}])
    session.add(MonthlyOverride(employee_id=emp.id, month=4, year=2025, present_days=21, source="manual"))
    session.flush()

    basis = resolve_attendance_basis(emp.id, 4, 2025)
    assert basis.working_days == 22
    row = eval_components(emp.id, 4, 2025, basis=basis)[0]
    assert row["monthly_amount"] == Decimal("8333.33")
    # 100000 / 12 * 21 / 22 = 7954.545..., not 8333.33 * 21 / 22 = 7954.54
    assert row["prorated_amount"] == Decimal("7954.55")


def test_non_numeric_amount_is_malformed(seed, emp):
    seed.plan(emp, [], payload={"components": [{"code": "BASIC", "amount": "12k"}]})
    with pytest.raises(MalformedComponentPayloadError):
        get_active_compensation(emp.id, 4, 2025)

    with pytest.raises(MalformedComponentPayloadError):
        save_compensation(emp.id, date(2025, 5, 1), [{"code": "HRA", "amount": "NaN"}])


def test_statutory_codes_are_skipped(seed, emp):
    seed.plan(emp, [
        {"code": "BASIC", "amount": 240000},
        {"code": "PF", "amount": 21600},
        {"component_code": "esic_ee", "amount": -1800},
        {"code": "PT", "amount": -2400},
    ])
    rows = eval_components(emp.id, 4, 2025)
    assert [r["code"] for r in rows] == ["BASIC"]


def test_component_type_comes_from_definitions(session, seed, emp):
    session.add(PayComponentDefinition(code="GRATUITY", name="Gratuity", type="employer_cost"))
    session.flush()
    seed.plan(emp, [{"code": "BASIC", "amount": 120000}, {"code": "GRATUITY", "amount": 12000}])
    rows = _by_code(eval_components(emp.id, 4, 2025))
    assert rows["GRATUITY"]["type"] == "employer_cost"
    assert rows["GRATUITY"]["name"] == "Gratuity"
    assert gross_earnings(list(rows.values())) == Decimal("10000.00")


def test_save_compensation_closes_open_predecessor(emp):
    first = save_compensation(emp.id, date(2025, 1, 1), [{"code": "BASIC", "amount": 120000}])
    second = save_compensation(emp.id, date(2025, 4, 1), [{"code": "BASIC", "amount": 150000}])

    first = db.session.get(EmployeeCompensation, first.id)
    assert first.effective_to == date(2025, 3, 31)
    assert second.effective_to is None
    assert second.ctc_annual == Decimal("150000.00")
    assert get_active_compensation(emp.id, 2, 2025).record.id == first.id
    assert get_active_compensation(emp.id, 4, 2025).record.id == second.id


def test_save_compensation_rejects_non_list(emp):
    with pytest.raises(MalformedComponentPayloadError):
        save_compensation(emp.id, date(2025, 1, 1), "BASIC")
