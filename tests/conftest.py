import os
from datetime import date, time

import pytest

from payroll_api import create_app
from payroll_api.extensions import db
from payroll_api.models.master import Organization, Employee
from payroll_api.models.attendance import Shift, EmployeeShift
from payroll_api.models.payroll import EmployeeCompensation


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def session(app):
    yield db.session


@pytest.fixture
def client(app):
    return app.test_client()


class Seed:
    """Row builders shared by the tests; everything is flushed, not committed."""

    def __init__(self, session):
        self.s = session

    def org(self, code="ACME", state="GJ"):
        o = Organization(code=code, name=f"{code} Pvt Ltd", state=state)
        self.s.add(o)
        self.s.flush()
        return o

    def employee(self, org, code="E001", work_state=None, status="active"):
        e = Employee(organization_id=org.id, code=code, name=f"Employee {code}",
                     work_state=work_state, status=status)
        self.s.add(e)
        self.s.flush()
        return e

    def shift(self, org, name="General", start=time(9, 0), end=time(18, 0), duration=9,
              weekly_offs=("saturday", "sunday"), overnight=False):
        sh = Shift(
            organization_id=org.id,
            name=name,
            start_time=start,
            end_time=end,
            break_duration_minutes=60,
            late_threshold_minutes=15,
            early_out_threshold_minutes=15,
            duration_hours=duration,
            is_overnight=overnight,
            weekly_off_days=list(weekly_offs),
        )
        self.s.add(sh)
        self.s.flush()
        return sh

    def assign(self, emp, shift, effective_from=date(2025, 1, 1), effective_to=None):
        a = EmployeeShift(employee_id=emp.id, shift_id=shift.id,
                          effective_from=effective_from, effective_to=effective_to)
        self.s.add(a)
        self.s.flush()
        return a

    def plan(self, emp, components, effective_from=date(2025, 1, 1), effective_to=None, payload=None):
        rec = EmployeeCompensation(
            employee_id=emp.id,
            organization_id=emp.organization_id,
            effective_from=effective_from,
            effective_to=effective_to,
            ctc_annual=sum(c.get("amount", 0) for c in components if c.get("amount", 0) > 0),
            compensation_payload=payload if payload is not None else {"components": components},
        )
        self.s.add(rec)
        self.s.flush()
        return rec


@pytest.fixture
def seed(session):
    return Seed(session)
