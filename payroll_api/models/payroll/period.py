from datetime import datetime
from typing import Any, Dict

from payroll_api.extensions import db

PERIOD_STATUSES = ("draft", "locked", "finalized")


class PayrollPeriod(db.Model):
    __tablename__ = "payroll_periods"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    month = db.Column(db.SmallInteger, nullable=False)
    year = db.Column(db.SmallInteger, nullable=False)
    status = db.Column(db.Enum(*PERIOD_STATUSES, name="payroll_period_status_enum"), nullable=False, default="draft")

    lock_at = db.Column(db.DateTime)
    locked_by = db.Column(db.Integer)
    finalized_at = db.Column(db.DateTime)
    finalized_by = db.Column(db.Integer)

    created_by = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    organization = db.relationship("Organization", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("organization_id", "month", "year", name="uq_payroll_period_org_month"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "month": self.month,
            "year": self.year,
            "status": self.status,
            "lock_at": self.lock_at.isoformat() if self.lock_at else None,
            "locked_by": self.locked_by,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
            "finalized_by": self.finalized_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
