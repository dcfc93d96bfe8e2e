from datetime import datetime
from typing import Any, Dict

from payroll_api.extensions import db


class PayrollRun(db.Model):
    """
    One finalized computation for (period, employee). Recomputation deletes
    the row and inserts a fresh one; rows are never patched in place.
    """
    __tablename__ = "payroll_runs"

    id = db.Column(db.Integer, primary_key=True)
    payroll_period_id = db.Column(db.Integer, db.ForeignKey("payroll_periods.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)

    snapshot = db.Column(db.JSON, nullable=False)  # line items as paid
    gross_earnings = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    net_pay = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    employer_cost = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    pf_wages = db.Column(db.Numeric(14, 2), default=0)
    esic_wages = db.Column(db.Numeric(14, 2), default=0)
    pt_amount = db.Column(db.Numeric(14, 2), default=0)
    tds_amount = db.Column(db.Numeric(14, 2), default=0)

    attendance_summary = db.Column(db.JSON)  # basis used for proration
    status = db.Column(db.String(20), nullable=False, default="processed")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    period = db.relationship("PayrollPeriod", lazy="joined")
    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("payroll_period_id", "employee_id", name="uq_payroll_run_period_employee"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payroll_period_id": self.payroll_period_id,
            "employee_id": self.employee_id,
            "snapshot": self.snapshot,
            "gross_earnings": float(self.gross_earnings or 0),
            "total_deductions": float(self.total_deductions or 0),
            "net_pay": float(self.net_pay or 0),
            "employer_cost": float(self.employer_cost or 0),
            "pf_wages": float(self.pf_wages or 0),
            "esic_wages": float(self.esic_wages or 0),
            "pt_amount": float(self.pt_amount or 0),
            "tds_amount": float(self.tds_amount or 0),
            "attendance_summary": self.attendance_summary,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
