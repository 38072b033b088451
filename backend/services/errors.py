# backend/services/errors.py
"""Domain errors raised by the negotiation core.

Every error is recoverable at the request boundary. ``to_dict`` carries the
authoritative state at failure time so a client can reconcile with one reload.
"""


class NegotiationError(Exception):
    code = "negotiation_error"
    status_code = 400

    def __init__(self, detail: str, **state):
        super().__init__(detail)
        self.detail = detail
        self.state = {k: v for k, v in state.items() if v is not None}

    def to_dict(self) -> dict:
        return {"detail": self.detail, "error": self.code, **self.state}


class InvalidTransition(NegotiationError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, detail: str, *, action: str, current_status: str = None,
                 quotation_status: str = None, version: int = None, **state):
        super().__init__(
            detail,
            action=action,
            currentStatus=current_status,
            quotationStatus=quotation_status,
            version=version,
            **state,
        )
        self.action = action
        self.current_status = current_status
        self.quotation_status = quotation_status
        self.version = version


class AlreadyAccepted(InvalidTransition):
    code = "already_accepted"


class AlreadyRejected(InvalidTransition):
    code = "already_rejected"


class QuotationExpired(InvalidTransition):
    code = "quotation_expired"


class DuplicateInvoice(NegotiationError):
    code = "duplicate_invoice"
    status_code = 409


class NotAuthorized(NegotiationError):
    code = "not_authorized"
    status_code = 403


class NotFound(NegotiationError):
    code = "not_found"
    status_code = 404


class ValidationError(NegotiationError):
    code = "validation_error"
    status_code = 422
