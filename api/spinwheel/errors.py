"""Error taxonomy shared by the services and the HTTP layer.

Every error carries a stable ``code`` so clients can tell apart why a spin was
refused (verification, cooldown, geofence, cap, exhaustion) and pick the
matching UX. ``details`` holds the actionable numbers (distance, days left,
limit reached) and is merged into the JSON error body.
"""
from typing import Any


class SpinWheelError(Exception):
    status_code = 400
    default_code = "ERROR"

    def __init__(self, message: str, code: str | None = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.details}


class NotFoundError(SpinWheelError):
    status_code = 404
    default_code = "NOT_FOUND"


class StateInvalidError(SpinWheelError):
    status_code = 400
    default_code = "STATE_INVALID"


class NotVerifiedError(StateInvalidError):
    status_code = 403
    default_code = "USER_NOT_VERIFIED"


class PolicyViolationError(SpinWheelError):
    status_code = 403
    default_code = "POLICY_VIOLATION"


class ExhaustionError(SpinWheelError):
    """No prize can be handed out right now; clients show 'try again later'."""
    status_code = 409
    default_code = "EXHAUSTED"


class ConfigurationError(ExhaustionError):
    """Campaign has nothing to draw from (no rules, no active prizes)."""
    status_code = 503


class ConflictError(SpinWheelError):
    status_code = 409
    default_code = "CONFLICT"
