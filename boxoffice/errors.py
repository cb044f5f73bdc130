# boxoffice/errors.py
from typing import Any, Dict, List, Optional


class TicketingError(Exception):
    """Base for every error surfaced to callers as an error envelope."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class ValidationFailed(TicketingError):
    status_code = 400
    code = "validation_failed"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, **context: Any):
        super().__init__(message, errors=errors or [], **context)
        self.errors = errors or []


class NotFound(TicketingError):
    status_code = 404
    code = "not_found"


class Conflict(TicketingError):
    status_code = 409
    code = "conflict"


class SoldOut(Conflict):
    code = "sold_out"


class AlreadyClaimed(Conflict):
    code = "already_claimed"


class AlreadyTransferred(Conflict):
    code = "already_transferred"


class GenderRestricted(Conflict):
    code = "gender_restricted"


class Expired(TicketingError):
    status_code = 410
    code = "expired"


class Unauthorized(TicketingError):
    status_code = 403
    code = "unauthorized"


class PaymentError(TicketingError):
    status_code = 402
    code = "payment_failed"
