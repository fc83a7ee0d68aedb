"""
Diagnostics Exceptions

Exception classes carrying a short error code and a human-readable detail.
"""

from typing import Any, Dict, Optional


class DiagnosticsError(Exception):
    """Base exception for diagnostics errors"""

    code = "INTERNAL"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "details": self.message}


class InvalidInputError(DiagnosticsError):
    """A required field is missing or blank"""
    code = "INVALID_INPUT"


class NotFoundError(DiagnosticsError):
    """No device matches the serial number"""
    code = "NOT_FOUND"


class BadRequestError(DiagnosticsError):
    """Malformed caller payload"""
    code = "BAD_REQUEST"


class RemoteCallError(DiagnosticsError):
    """Exception for failed Bitrix24 calls"""

    code = "REMOTE_CALL_FAILED"

    def __init__(self, method: str, message: str, status_code: Optional[int] = None,
                 response: Optional[str] = None):
        super().__init__(f"{method}: {message}")
        self.method = method
        self.remote_message = message
        self.status_code = status_code
        self.response = response


class RemoteRateLimitError(RemoteCallError):
    """Exception for throttled Bitrix24 calls"""
    pass
