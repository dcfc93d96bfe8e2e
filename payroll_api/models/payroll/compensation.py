from datetime import datetime, date
from payroll_api.extensions import db


class EmployeeCompensation(db.Model):
    __tablename__ = "employee_compensation"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    # effective-dated (null effective_to = open-ended)
    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_to = db.Column(db.Date)

    ctc_annual = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    pay_schedule = db.Column(db.String(20), nullable=False, default="monthly")
    currency = db.Column(db.String(3), nullable=False, default="INR")

    # {"components": [{"component_code": "BASIC", "amount": 300000}, ...], "notes": "..."}
    # amounts are annual; negative amounts are deductions
    compensation_payload = db.Column(db.JSON, nullable=False)

    created_by = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        db.Index("ix_emp_comp_effective", "employee_id", "effective_from", "effective_to"),
    )
