import enum
from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationError(AppException):
    """Rejected submission. Raised before any external call is made."""
    def __init__(self, message: str):
        super().__init__(message=message, status_code=400, error_code="VALIDATION_ERROR")

class UploadError(AppException):
    def __init__(self, message: str = "Failed to upload file"):
        super().__init__(message=message, status_code=502, error_code="UPLOAD_FAILED")

class ConversionErrorKind(str, enum.Enum):
    ENGINE_LOAD_FAILED = "ENGINE_LOAD_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    ENCRYPTED_DOCUMENT = "ENCRYPTED_DOCUMENT"
    RENDER_FAILED = "RENDER_FAILED"
    ENCODE_FAILED = "ENCODE_FAILED"

class ConversionError(AppException):
    def __init__(self, kind: ConversionErrorKind, message: str):
        self.kind = kind
        super().__init__(
            message=message,
            status_code=422,
            error_code="CONVERSION_FAILED",
            details={"kind": kind.value}
        )

class PersistError(AppException):
    def __init__(self, message: str = "Failed to save resume data"):
        super().__init__(message=message, status_code=503, error_code="PERSIST_FAILED")

class AnalysisError(AppException):
    def __init__(self, message: str = "Failed to analyze resume"):
        super().__init__(message=message, status_code=502, error_code="ANALYSIS_FAILED")

class AIError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=503,
            error_code="AI_SERVICE_UNAVAILABLE",
            details=details
        )

class AIKillSwitchError(AppException):
    def __init__(self):
        super().__init__(
            message="AI services are currently offline for maintenance.",
            status_code=503,
            error_code="AI_KILL_SWITCH_ACTIVE"
        )

class DecodeError(AppException):
    """A stored record (or AI payload) that does not match the expected shape."""
    def __init__(self, message: str = "Stored resume data is malformed"):
        super().__init__(message=message, status_code=500, error_code="DECODE_ERROR")

class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message=message, status_code=404, error_code="NOT_FOUND")

class ResourceResolutionError(AppException):
    """A blob reference that could not be turned into a viewable resource."""
    def __init__(self, message: str = "Resource is unavailable"):
        super().__init__(message=message, status_code=404, error_code="RESOURCE_UNAVAILABLE")

class ConflictError(AppException):
    def __init__(self, message: str = "An upload is already being processed"):
        super().__init__(message=message, status_code=409, error_code="INGESTION_IN_PROGRESS")

class AuthenticationError(AppException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_FAILED"
        )
