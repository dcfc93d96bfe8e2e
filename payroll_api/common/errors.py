# payroll_api/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from payroll_api.common.http import fail


class APIError(Exception):
    """Custom API Error class."""
    status_code = 400
    code = "API_ERROR"

    def __init__(self, message, code=None, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload


# ---------- payroll pipeline ----------

class MissingCompensationError(APIError):
    """No compensation plan is effective for the target month."""
    status_code = 404
    code = "MISSING_COMPENSATION"


class MalformedComponentPayloadError(APIError):
    """Compensation payload has no usable `components` list."""
    status_code = 422
    code = "MALFORMED_COMPONENT_PAYLOAD"


class InvalidPeriodStateError(APIError):
    status_code = 409
    code = "INVALID_PERIOD_STATE"


class PeriodNotFoundError(APIError):
    status_code = 404
    code = "PERIOD_NOT_FOUND"


# ---------- attendance ----------

class AttendanceError(APIError):
    """Punch sequencing problems (double punch-in, punch-out with nothing open...)."""
    status_code = 422
    code = "ATTENDANCE_ERROR"


class OverridePrecedenceError(APIError):
    """A lower-priority source tried to replace a higher-priority fact."""
    status_code = 409
    code = "OVERRIDE_PRECEDENCE"


# ---------- AI ledger ----------

class NoActivePolicyError(APIError):
    status_code = 409
    code = "NO_ACTIVE_POLICY"


class InvalidPolicyStateError(APIError):
    status_code = 409
    code = "INVALID_POLICY_STATE"


class InvalidRunStateError(APIError):
    status_code = 409
    code = "INVALID_RUN_STATE"


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR",
                    detail=str(e.orig) if getattr(e, "orig", None) else None)

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
