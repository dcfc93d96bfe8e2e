from datetime import datetime
from payroll_api.extensions import db

COMPONENT_TYPES = ("earning", "deduction", "statutory_deduction", "employer_cost")


class PayComponentDefinition(db.Model):
    __tablename__ = "pay_components"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)  # BASIC, HRA, LOAN_EMI, ...
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.Enum(*COMPONENT_TYPES, name="pay_component_type_enum"), nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
