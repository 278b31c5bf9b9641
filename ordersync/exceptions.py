"""
Error taxonomy for the order sync engine.

Every error a caller can observe is an OrderSyncError subclass carrying an
HTTP status and a stable machine-readable code. main.py renders them as
{"error": {"code": ..., "message": ...}}.
"""

from typing import Optional


class OrderSyncError(Exception):
    """Base class for all handled errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class NotFound(OrderSyncError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidCredentials(OrderSyncError):
    """Credentials missing required fields or rejected by the platform."""
    status_code = 400
    code = "INVALID_CREDENTIALS"


class UnsupportedPlatform(OrderSyncError):
    status_code = 400
    code = "UNSUPPORTED_PLATFORM"


class SignatureMissing(OrderSyncError):
    status_code = 401
    code = "SIGNATURE_MISSING"

    def __init__(self, message: str = "Missing webhook signature"):
        super().__init__(message)


class SignatureInvalid(OrderSyncError):
    status_code = 401
    code = "SIGNATURE_INVALID"

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class UpstreamUnavailable(OrderSyncError):
    """Platform API unreachable or returned a non-2xx response."""
    status_code = 502
    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class MalformedPayload(OrderSyncError):
    status_code = 400
    code = "MALFORMED_PAYLOAD"


class SyncInProgress(OrderSyncError):
    status_code = 409
    code = "SYNC_IN_PROGRESS"

    def __init__(self, message: str = "A sync is already running for this channel"):
        super().__init__(message)


class CredentialDecryptError(OrderSyncError):
    status_code = 500
    code = "CREDENTIAL_DECRYPT_FAILED"
