"""Custom exceptions for the CMS lookup service.

Each exception carries a machine-readable ``error_code`` and the HTTP
``status_code`` the routes answer with. Structured ``details`` are meant for
logs; clients only ever see the generic messages chosen by the routes.
"""

from typing import Optional, Dict, Any


class CmsLookupException(Exception):
    """Base exception for all service errors."""

    error_code: str = "CMSLOOKUP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return structured error response dict."""
        response = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response


# ============ Validation Errors (4xx) ============


class ValidationError(CmsLookupException):
    """Input validation failed."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class InvalidDomainError(ValidationError):
    """Domain failed the label syntax check.

    ``violation`` is the :class:`~cmslookup.utils.domain.DomainViolation`
    describing the first broken rule.
    """

    error_code = "INVALID_DOMAIN"

    def __init__(self, domain: str, violation):
        super().__init__(violation.message, details={"domain": domain, **violation.to_dict()})
        self.domain = domain
        self.violation = violation


class RateLimitExceededError(CmsLookupException):
    """Rate limit exceeded."""

    error_code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, limit: str = "unknown"):
        super().__init__(f"Rate limit exceeded: {limit}", details={"limit": limit})


# ============ Authentication Errors ============


class AuthenticationError(CmsLookupException):
    """Authentication failed."""

    error_code = "AUTHENTICATION_ERROR"
    status_code = 401


class UnauthorizedError(AuthenticationError):
    """Missing or invalid API key."""

    error_code = "UNAUTHORIZED"

    def __init__(self, hint: str = "Set X-API-KEY header"):
        super().__init__("Unauthorized access", details={"hint": hint})


# ============ Scan Errors ============


class ScanError(CmsLookupException):
    """Base class for scanner errors.

    Scanner failures are answered with 400 and a generic body, as clients
    cannot tell an unreachable site from one CMSeeK could not fingerprint.
    """

    error_code = "SCAN_ERROR"
    status_code = 400


class ScanFailedError(ScanError):
    """Scanner exited abnormally or its output could not be read."""

    error_code = "SCAN_FAILED"

    def __init__(self, domain: str, reason: str, output: str = ""):
        super().__init__(f"Scan failed for {domain}: {reason}", details={"domain": domain, "reason": reason})
        self.output = output


class ScanTimeoutError(ScanError):
    """Scanner did not finish within the configured timeout."""

    error_code = "SCAN_TIMEOUT"
    status_code = 504

    def __init__(self, domain: str, timeout_seconds: float):
        super().__init__(
            f"Scan timed out for {domain} after {timeout_seconds}s",
            details={"domain": domain, "timeout_seconds": timeout_seconds},
        )


class ResultNotFoundError(ScanError):
    """Scanner finished but left no result file behind."""

    error_code = "RESULT_NOT_FOUND"

    def __init__(self, domain: str, path: str):
        super().__init__(f"No scan result for {domain} at {path}", details={"domain": domain, "path": path})


# ============ Configuration Errors ============


class ConfigurationError(CmsLookupException):
    """Configuration issue."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, message: str):
        super().__init__(f"Configuration error for {setting}: {message}", details={"setting": setting})


# ============ Utility Functions ============


def error_response(exception: CmsLookupException) -> tuple:
    """Create Flask JSON response from exception.

    Returns:
        Tuple of (response_dict, status_code) ready for jsonify
    """
    return exception.to_dict(), exception.status_code
