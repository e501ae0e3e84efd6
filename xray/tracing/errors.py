"""Exception types raised by the X-Ray SDK."""

from typing import Optional


class XRayError(Exception):
    """Base class for SDK errors."""


class NoActiveSessionError(XRayError, RuntimeError):
    """A step was started while no session is current."""

    def __init__(self, message: str = "No session! Call start_session() first.") -> None:
        super().__init__(message)


class ExportError(XRayError):
    """The collector rejected a payload or could not be reached."""

    def __init__(self, endpoint: str, reason: str, status_code: Optional[int] = None) -> None:
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Export to {endpoint} failed: {reason}")
