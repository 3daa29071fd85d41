from typing import Any


class PlexmateError(Exception):
    """Base application error."""

    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "details": self.details,
        }


class NotConfiguredError(PlexmateError):
    """An upstream service has no URL or API key configured."""

    def __init__(self, service: str):
        super().__init__(message=f"{service} is not configured", status_code=503)
        self.service = service


class UpstreamError(PlexmateError):
    """An upstream service could not be reached or returned an error."""

    def __init__(self, service: str, message: str, status_code: int = 502):
        super().__init__(message=f"{service}: {message}", status_code=status_code)
        self.service = service


class MalformedEventError(PlexmateError):
    """Inbound webhook payload is missing required fields."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message=message, status_code=400, details=details)
