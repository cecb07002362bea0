"""Error taxonomy for the proxy layer.

Every failure is raised as a ``ProxyError`` subclass and rendered by the
handlers registered in ``main.py`` as ``{"error": ..., "details": ...}``.
"""

from typing import Optional


class ProxyError(Exception):
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class BadRequest(ProxyError):
    status_code = 400


class InvalidParameter(BadRequest):
    """A query parameter could not be converted into an upstream value."""


class MethodNotAllowed(ProxyError):
    status_code = 405

    def __init__(self, method: str = ""):
        super().__init__("Method not allowed", details=f"{method} is not supported" if method else None)
        self.method = method


class UpstreamError(ProxyError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        super().__init__(f"{status_code} {reason}".strip(), details=body or None, status_code=status_code)
        self.reason = reason
        self.body = body


class UpstreamClientError(UpstreamError):
    pass


class UpstreamServerError(UpstreamError):
    pass


class BadGateway(ProxyError):
    """Upstream could not be reached at all (DNS, refused connection, timeout)."""

    status_code = 502


class UpstreamTimeout(BadGateway):
    pass


class InternalError(ProxyError):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


class PayloadTooLarge(ProxyError):
    status_code = 413
