from datetime import datetime

from payroll_api.extensions import db


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    state = db.Column(db.String(10))  # default PT jurisdiction, e.g. "GJ"
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Employee(db.Model):
    """
    Minimal employee row the pipeline reads. Profile data lives with the
    HR administration side; only what payroll needs is mirrored here.
    """
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)

    code = db.Column(db.String(32), nullable=False)    # unique per organization
    name = db.Column(db.String(160), nullable=False)
    work_state = db.Column(db.String(10), nullable=True)  # overrides organization.state for PT
    status = db.Column(db.String(16), default="active", nullable=False)  # active/inactive

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "code", name="uq_employee_org_code"),
        db.Index("ix_emp_org_id", "organization_id"),
    )

    organization = db.relationship("Organization", lazy="joined")

    @property
    def pt_state(self):
        return self.work_state or getattr(self.organization, "state", None)
