# payroll_api/models/ai.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import text

from payroll_api.extensions import db

POLICY_STATUSES = ("draft", "approved", "active", "retired")
RUN_TYPES = ("weekly_hydration", "shift_compile", "payroll_preview")
RUN_STATUSES = ("running", "completed", "failed")
DECISION_TYPES = ("late_flag", "holiday_flag", "override_apply", "ot_calc", "attendance_status")


class AIPolicy(db.Model):
    """
    Versioned instruction set driving attendance hydration for one organization.

    Lifecycle: draft -> approved -> active -> retired. Activation retires the
    previously active policy; the partial unique index below is the backstop.
    """

    __tablename__ = "attendance_ai_policies"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    policy_name = db.Column(db.String(120), nullable=False)
    policy_version = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default="draft")

    instruction_text = db.Column(db.Text, nullable=False)
    instruction_json = db.Column(db.JSON, nullable=False, default=dict)
    model_name = db.Column(db.String(80), nullable=False, default="gemini-2.5-flash")
    confidence_score = db.Column(db.Numeric(4, 3))

    created_by = db.Column(db.Integer)
    approved_by = db.Column(db.Integer)
    approved_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("status in ('draft','approved','active','retired')", name="ck_ai_policy_status"),
        db.UniqueConstraint("organization_id", "policy_name", "policy_version", name="uq_ai_policy_version"),
        db.Index(
            "uq_ai_policy_one_active",
            "organization_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        db.Index("ix_ai_policy_org_status", "organization_id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "policy_name": self.policy_name,
            "policy_version": self.policy_version,
            "status": self.status,
            "instruction_text": self.instruction_text,
            "instruction_json": self.instruction_json,
            "model_name": self.model_name,
            "confidence_score": float(self.confidence_score) if self.confidence_score is not None else None,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }


class AIRun(db.Model):
    __tablename__ = "attendance_ai_runs"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    policy_id = db.Column(db.Integer, db.ForeignKey("attendance_ai_policies.id", ondelete="SET NULL"), nullable=True)
    run_type = db.Column(db.String(24), nullable=False)
    period_start = db.Column(db.Date)
    period_end = db.Column(db.Date)
    input_snapshot = db.Column(db.JSON, nullable=False, default=dict)
    output_summary = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(16), nullable=False, default="running")
    error_message = db.Column(db.Text)
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime)

    policy = db.relationship("AIPolicy", lazy="joined")

    __table_args__ = (
        db.CheckConstraint(
            "run_type in ('weekly_hydration','shift_compile','payroll_preview')", name="ck_ai_run_type"
        ),
        db.CheckConstraint("status in ('running','completed','failed')", name="ck_ai_run_status"),
        db.Index("ix_ai_runs_org_period", "organization_id", "period_start", "period_end"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "policy_id": self.policy_id,
            "run_type": self.run_type,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "output_summary": self.output_summary,
            "status": self.status,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class AIDecision(db.Model):
    __tablename__ = "attendance_ai_decisions"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey("attendance_ai_runs.id", ondelete="CASCADE"), nullable=False)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    attendance_id = db.Column(db.Integer, db.ForeignKey("attendance.id", ondelete="SET NULL"), nullable=True)

    decision_type = db.Column(db.String(24), nullable=False)
    decision_payload = db.Column(db.JSON, nullable=False, default=dict)
    source_priority = db.Column(db.String(16), nullable=False, default="ai")
    confidence = db.Column(db.Numeric(4, 3))
    human_review_required = db.Column(db.Boolean, nullable=False, default=False)

    reviewed_by = db.Column(db.Integer)
    reviewed_at = db.Column(db.DateTime)
    review_outcome = db.Column(db.String(16))  # approved | rejected
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    run = db.relationship("AIRun", lazy="joined")

    __table_args__ = (
        db.CheckConstraint(
            "decision_type in ('late_flag','holiday_flag','override_apply','ot_calc','attendance_status')",
            name="ck_ai_decision_type",
        ),
        db.CheckConstraint(
            "source_priority in ('compliance','manual','ai','default')", name="ck_ai_decision_source"
        ),
        db.Index("ix_ai_decisions_review", "human_review_required", "created_at"),
        db.Index("ix_ai_decisions_run", "run_id", "employee_id", "attendance_id"),
    )

    @property
    def is_approved(self) -> bool:
        return self.reviewed_at is not None and self.review_outcome == "approved"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "organization_id": self.run.organization_id if self.run else None,
            "employee_id": self.employee_id,
            "attendance_id": self.attendance_id,
            "decision_type": self.decision_type,
            "decision_payload": self.decision_payload,
            "source_priority": self.source_priority,
            "confidence": float(self.confidence) if self.confidence is not None else None,
            "human_review_required": self.human_review_required,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_outcome": self.review_outcome,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
