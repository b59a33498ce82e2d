from typing import Any, Dict, Optional

MAX_DETAIL_CHARS = 400


def truncate(value: Any, limit: int = MAX_DETAIL_CHARS) -> str:
    text = value if isinstance(value, str) else str(value)
    return text[:limit]


class ImmodiagError(Exception):
    """Base error; carries the HTTP status and optional details for the JSON envelope."""

    status = 500

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": False, "error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InputError(ImmodiagError):
    status = 400


class NotFoundError(ImmodiagError):
    status = 404


class MethodNotAllowed(ImmodiagError):
    status = 405

    def __init__(self, allowed: str = "GET, POST"):
        super().__init__(f"Method Not Allowed. Use {allowed.replace(', ', ' or ')}.")
        self.allowed = allowed


class ConfigurationError(ImmodiagError):
    status = 500


class UpstreamError(ImmodiagError):
    """A failed outbound call. Also the 'last error' of an exhausted fallback chain."""

    status = 502

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None,
                 url: Optional[str] = None, upstream_status: Optional[int] = None):
        super().__init__(message, status=status, details=details)
        self.url = url
        self.upstream_status = upstream_status

    @property
    def hint(self) -> str:
        if self.upstream_status:
            return f"Last error: HTTP {self.upstream_status}"
        return f"Last error: {truncate(self.message, 120)}"
