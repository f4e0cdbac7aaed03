"""Gateway error taxonomy: auth, quota, backend and ledger failures."""

from typing import Optional


class GatewayError(Exception):
    """Base class for errors raised by the gateway core."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthError(GatewayError):
    status_code = 401
    code = "invalid_api_key"
    hint = "Check your API key or contact support"


class MissingKey(AuthError):
    code = "authentication_required"
    hint = 'Include your key as "Authorization: Bearer <key>" or in the x-api-key header'

    def __init__(self):
        super().__init__("API key required")


class UnknownKey(AuthError):
    def __init__(self):
        super().__init__("Invalid API key")


class Suspended(AuthError):
    status_code = 403
    code = "account_suspended"
    hint = "Account suspended - contact support"

    def __init__(self):
        super().__init__("API key suspended")


class Expired(AuthError):
    hint = "Contact support to renew your API key"

    def __init__(self):
        super().__init__("API key expired")


# ---------------------------------------------------------------------------
# Quotas
# ---------------------------------------------------------------------------

class QuotaError(GatewayError):
    """Raised when a quota tier denies a request. Carries the limiter decision."""
    code = "rate_limit_exceeded"

    def __init__(self, decision, plan: Optional[str] = None, client_id: Optional[str] = None):
        self.decision = decision
        self.plan = plan
        self.client_id = client_id
        super().__init__(f"{decision.tier.value} quota exceeded (limit {decision.limit})")


class GlobalExceeded(QuotaError):
    code = "too_many_requests"


class HourlyExceeded(QuotaError):
    code = "rate_limit_exceeded"


class PerMinuteExceeded(QuotaError):
    code = "analysis_rate_limit_exceeded"


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class BackendErrorKind:
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    DNS_FAILURE = "dns_error"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({
    BackendErrorKind.TIMEOUT,
    BackendErrorKind.CONNECTION_REFUSED,
    BackendErrorKind.SERVER_ERROR,
})

USER_MESSAGES = {
    BackendErrorKind.TIMEOUT: "Document processing took too long. Please try again with a smaller or clearer document.",
    BackendErrorKind.CONNECTION_REFUSED: "Unable to connect to processing service. Please try again later.",
    BackendErrorKind.DNS_FAILURE: "Processing service temporarily unavailable. Please try again later.",
    BackendErrorKind.CLIENT_ERROR: "Invalid document or request format. Please check your PDF and try again.",
    BackendErrorKind.SERVER_ERROR: "Processing service error. Please try again later.",
    BackendErrorKind.UNKNOWN: "An unexpected error occurred during document processing.",
}


class BackendError(GatewayError):
    """A failed call to the analysis backend, classified for retry decisions.

    ``str(err)`` is the internal detail for logs; ``user_message`` is what
    the caller sees.
    """

    def __init__(self, kind: str, detail: str, status_code: Optional[int] = None,
                 duration_ms: int = 0):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        self.duration_ms = duration_ms
        super().__init__(detail)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.kind, USER_MESSAGES[BackendErrorKind.UNKNOWN])


class BackendApplicationError(BackendError):
    """The backend answered, but with ``{"status": "error"}``."""

    def __init__(self, detail: str, duration_ms: int = 0):
        super().__init__(BackendErrorKind.UNKNOWN, detail, duration_ms=duration_ms)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class LedgerError(GatewayError):
    pass


class PersistenceError(LedgerError):
    """The usage store could not be read or written."""
