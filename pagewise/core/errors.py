"""
Error taxonomy. Every failure the core raises on purpose is a PagewiseError
carrying the HTTP status and a stable machine-readable code.

Entitlement failures (upgrade_required, quota_exhausted) have their own codes
so clients can prompt an upgrade instead of showing a generic error page.
"""

from typing import Optional


class PagewiseError(Exception):
    status_code: int = 500
    code: str = "internal"

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.cause = cause

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(PagewiseError):
    status_code = 400
    code = "validation"

    def __init__(self, message: str, field: str = ""):
        super().__init__(f"{field}: {message}" if field else message)
        self.field = field


class AccessDenied(PagewiseError):
    status_code = 403
    code = "access_denied"

    def __init__(self, message: str = "access denied"):
        super().__init__(message)


class NotFound(PagewiseError):
    status_code = 404
    code = "not_found"


class UpgradeRequired(PagewiseError):
    status_code = 402
    code = "upgrade_required"

    def __init__(self, message: str = "your plan does not include the AI assistant"):
        super().__init__(message)


class QuotaExhausted(PagewiseError):
    status_code = 429
    code = "quota_exhausted"

    def __init__(self, message: str = "monthly AI token limit reached"):
        super().__init__(message)


class StorageLimitExceeded(PagewiseError):
    status_code = 413
    code = "storage_limit_exceeded"


class ProcessingFailed(PagewiseError):
    status_code = 422
    code = "processing_failed"


class ServiceUnavailable(PagewiseError):
    status_code = 503
    code = "service_unavailable"
