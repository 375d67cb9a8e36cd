"""Error taxonomy shared by services and blueprints.

Services raise these; the app-level error handler in create_app() turns
them into ``{"error": ..., "code": ...}`` JSON responses.
"""


class MarketplaceError(Exception):
    status_code = 400
    code = "invalid_request"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class ValidationError(MarketplaceError, ValueError):
    """Malformed input or a precondition the caller can see (product sold, wrong method)."""

    status_code = 400
    code = "validation_error"


class PermissionDeniedError(MarketplaceError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "not_found"


class AlreadyDoneError(MarketplaceError):
    """The requested effect already happened (or is happening). Often a benign race."""

    status_code = 409
    code = "already_done"


class WebhookSignatureError(MarketplaceError):
    status_code = 400
    code = "invalid_signature"


class ExternalServiceError(MarketplaceError):
    """Payment processor or carrier unreachable, timed out, or answered non-2xx."""

    status_code = 502
    code = "external_service_error"
