# payroll_api/common/parsing.py
from datetime import date, datetime
from typing import Optional

from payroll_api.common.errors import APIError

_DT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
)


def parse_ts(s, field="timestamp") -> Optional[datetime]:
    if s in (None, ""):
        return None
    s = str(s).strip()
    try:
        return datetime.fromisoformat(s.replace(" ", "T"))
    except ValueError:
        pass
    for fmt in _DT_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            pass
    raise APIError(f"{field} must be an ISO datetime", code="VALIDATION_ERROR", status_code=422)


def parse_date(s, field="date") -> Optional[date]:
    if s in (None, ""):
        return None
    try:
        return date.fromisoformat(str(s)[:10])
    except ValueError:
        raise APIError(f"{field} must be YYYY-MM-DD", code="VALIDATION_ERROR", status_code=422)


def as_int(val, field, required=False) -> Optional[int]:
    if val in (None, "", "null"):
        if required:
            raise APIError(f"{field} is required", code="VALIDATION_ERROR", status_code=422)
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        raise APIError(f"{field} must be integer", code="VALIDATION_ERROR", status_code=422)


def as_bool(val) -> bool:
    return str(val).lower() in ("true", "1", "yes", "y", "on")
