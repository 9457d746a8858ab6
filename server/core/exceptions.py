"""Gateway exception hierarchy.

Every error a caller can see derives from GatewayError, which carries the
HTTP status and the error category rendered into the JSON error body.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    status_code: int = 500
    category: str = "server_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.category, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class ValidationError(GatewayError):
    """Missing or malformed input, unsupported URL scheme."""

    status_code = 400
    category = "validation_error"


class AuthError(GatewayError):
    """Missing, invalid or expired credential."""

    status_code = 401
    category = "auth_error"


class ForbiddenError(AuthError):
    """Credential present but not privileged enough (admin secret)."""

    status_code = 403
    category = "forbidden"


class SSRFRejection(GatewayError):
    """Target host resolves to a non-public address or does not resolve."""

    status_code = 403
    category = "ssrf_rejected"

    def __init__(self, hostname: str):
        self.hostname = hostname
        super().__init__("hostname resolves to non-public address", detail=hostname)


class NotFound(GatewayError):
    """Unknown or expired resource."""

    status_code = 404
    category = "not_found"


class RateLimitExceeded(GatewayError):
    """Client exceeded its request budget for the current window."""

    status_code = 429
    category = "rate_limited"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__("too many requests", detail=f"retry after {retry_after}s")


class RenderError(GatewayError):
    """Navigation timeout or renderer failure."""

    status_code = 500
    category = "render_failed"


class CacheBackendError(GatewayError):
    """Shared cache backend failure.

    The backend message is kept on the exception for logging and withheld
    from the response body.
    """

    status_code = 500
    category = "cache_error"

    def __init__(self, operation: str, key: str, cause: Exception):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"cache {operation} failed")
