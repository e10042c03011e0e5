"""
Error taxonomy for outward-facing API failures.

Every error carries an HTTP status, a stable machine code and a human-readable
message. The exception handlers in ``app.py`` render them as
``{"ok": false, "error": <message>, "code": <code>, ...}``; anything in
``log_detail`` stays in the server logs.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = 500
    code: str = "APP-500-INTERNAL"

    def __init__(self, message: str, log_detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.log_detail = log_detail

    def extra(self) -> Dict[str, Any]:
        """Additional public fields for the error body."""
        return {}


class Unauthorized(AppError):
    status_code = 401
    code = "APP-401-AUTH"

    def __init__(self, message: str = "Unauthorized", log_detail: Optional[str] = None):
        super().__init__(message, log_detail)


class MethodNotAllowed(AppError):
    status_code = 405
    code = "APP-405-METHOD"

    def __init__(self, message: str = "Method not allowed"):
        super().__init__(message)


class InvalidRequest(AppError):
    status_code = 400
    code = "APP-400-VALIDATION"


class IntegrationNotConnected(AppError):
    """No usable credential exists for the user and provider."""

    status_code = 400
    code = "APP-400-NOT-CONNECTED"

    def __init__(self, provider: str, message: str, reason: Optional[str] = None):
        super().__init__(message, log_detail=reason)
        self.provider = provider
        self.reason = reason

    def extra(self) -> Dict[str, Any]:
        return {"provider": self.provider}


class ProviderApiError(AppError):
    """The provider answered with an HTTP error; status and body pass through."""

    code = "APP-PROVIDER-API"

    def __init__(self, provider: str, status: int, body: Any):
        super().__init__(f"{provider} API error")
        self.provider = provider
        self.status_code = status
        self.body = body

    def extra(self) -> Dict[str, Any]:
        return {"provider": self.provider, "status": self.status_code, "details": self.body}


class ProviderUnreachable(AppError):
    """No response was received from the provider."""

    status_code = 500
    code = "APP-500-PROVIDER-UNREACHABLE"

    def __init__(self, provider: str, log_detail: Optional[str] = None):
        super().__init__(f"{provider} is unreachable", log_detail)
        self.provider = provider

    def extra(self) -> Dict[str, Any]:
        return {"provider": self.provider}


class StoreError(AppError):
    """Credential persistence failed after exhausting retries."""

    status_code = 500
    code = "APP-500-STORE"

    def __init__(
        self,
        log_detail: Optional[str] = None,
        message: str = "Failed to persist integration state",
    ):
        super().__init__(message, log_detail)


class ServiceNotConfigured(AppError):
    status_code = 503
    code = "APP-503-NOT-CONFIGURED"
