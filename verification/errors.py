"""
Error taxonomy for the verification service.

Every error carries a human message, a stable error code, optional details
and the HTTP status the action endpoint answers with.
"""
from typing import Any, Dict, Optional


class VerificationError(Exception):
    """Base exception for verification errors"""
    status_code = 500
    error_code = "VERIFICATION_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to JSON-serializable dict"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ValidationError(VerificationError):
    """Missing or malformed input"""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class DocumentRequiredError(ValidationError):
    """Face verification attempted before a document was uploaded"""
    error_code = "DOCUMENT_REQUIRED"

    def __init__(self, token: str):
        super().__init__(
            message="Document not uploaded",
            details={
                "session_token": token,
                "suggestion": "Upload the identity document before the selfie",
            },
        )


class NotFoundError(VerificationError):
    status_code = 404
    error_code = "NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    error_code = "SESSION_NOT_FOUND"

    def __init__(self, token: str):
        super().__init__(message="Session not found", details={"session_token": token})


class ReservationNotFoundError(NotFoundError):
    """The reservation directory has no match for the supplied guest"""
    status_code = 403
    error_code = "RESERVATION_NOT_FOUND"

    def __init__(self):
        super().__init__(
            message="Reservation not found",
            details={"suggestion": "Check the guest name and reservation reference"},
        )


class UpstreamServiceError(VerificationError):
    """Object store, extractor, face analyzer or reservation service failure"""
    status_code = 502
    error_code = "UPSTREAM_ERROR"

    def __init__(self, service: str, reason: Any = None):
        super().__init__(
            message=f"{service} request failed",
            details={"service": service, "reason": str(reason) if reason is not None else None},
        )


class StorageError(UpstreamServiceError):
    """Session repository failure"""
    status_code = 500
    error_code = "STORAGE_ERROR"

    def __init__(self, reason: Any = None):
        super().__init__("session storage", reason)


class ConfigurationError(VerificationError):
    """Required external-service configuration is missing"""
    status_code = 500
    error_code = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, reason: Optional[str] = None):
        super().__init__(
            message=f"Server misconfigured: missing {setting}",
            details={"setting": setting, "reason": reason},
        )
