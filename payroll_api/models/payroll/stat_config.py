from datetime import datetime, date
from payroll_api.extensions import db


class StatConfig(db.Model):
    """
    Scoped statutory parameters. value_json shapes:
    - PF:  {"emp_rate": 0.12, "er_rate": 0.12, "wage_cap": 15000}
    - ESI: {"emp_rate": 0.0075, "er_rate": 0.0325, "threshold": 21000}
    - PT:  {"slabs": [{"max": 5999, "amount": 0}, {"max": 8999, "amount": 80}, {"max": null, "amount": 200}]}
    """
    __tablename__ = "stat_configs"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum("PF", "ESI", "PT", name="statconfig_type"), nullable=False)

    # Scoping: by organization, state, both, or global (both NULL)
    scope_organization_id = db.Column(db.Integer, nullable=True)
    scope_state = db.Column(db.String(10), nullable=True)  # e.g., "MH"
    priority = db.Column(db.Integer, nullable=False, default=100)

    value_json = db.Column(db.JSON, nullable=False)
    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_to = db.Column(db.Date)

    created_by = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    closed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index(
            "ix_statcfg_resolve",
            "type",
            "scope_state",
            "scope_organization_id",
            "effective_from",
            "effective_to",
            "priority",
        ),
    )
