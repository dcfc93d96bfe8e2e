# payroll_api/models/payroll/__init__.py
# Import order matters: component definitions first, pay_run last (it references periods).
from payroll_api.extensions import db  # noqa

from .components import PayComponentDefinition
from .compensation import EmployeeCompensation
from .stat_config import StatConfig
from .period import PayrollPeriod
from .pay_run import PayrollRun

__all__ = [
    "PayComponentDefinition", "EmployeeCompensation", "StatConfig",
    "PayrollPeriod", "PayrollRun",
]
